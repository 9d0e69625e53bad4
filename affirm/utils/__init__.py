"""
Utilities Module
================

Helper functions and utility classes.
"""

from affirm.utils.helpers import (
    from_epoch_ms,
    mask_id,
    to_epoch_ms,
    utc_now,
)

__all__ = ["from_epoch_ms", "mask_id", "to_epoch_ms", "utc_now"]
