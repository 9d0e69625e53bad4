"""Affirm mobile app backend."""
