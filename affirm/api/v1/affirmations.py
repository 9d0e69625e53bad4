"""
Cloud Affirmations API Endpoints
================================

Sync of affirmation metadata between the mobile app and the cloud.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from affirm.core.errors import ErrorCodes, ValidationError
from affirm.db.session import get_db
from affirm.dependencies import CurrentUserId
from affirm.schemas.affirmation import AffirmationDeleteRequest, AffirmationSaveRequest
from affirm.services.affirmation_service import AffirmationService

router = APIRouter()


@router.get("")
async def list_affirmations(
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """List the caller's non-archived affirmation metas, oldest first."""
    metas = await AffirmationService(db).list_metas(user_id)
    return [meta.model_dump(by_alias=True) for meta in metas]


@router.post("/save")
async def save_affirmations(
    request: AffirmationSaveRequest,
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Bulk upsert affirmation metas keyed by client id."""
    if not request.items:
        raise ValidationError(
            message="No items provided",
            field="items",
            code=ErrorCodes.AFFIRM_EMPTY_BATCH,
        )

    count = await AffirmationService(db).save_metas(user_id, request.items)
    await db.commit()
    return {"ok": True, "count": count}


@router.post("/delete")
async def delete_affirmation(
    request: AffirmationDeleteRequest,
    user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete one affirmation by client id. Already-deleted is not an error."""
    deleted = await AffirmationService(db).delete_meta(user_id, request.id)
    await db.commit()
    return {"ok": True, "deletedCount": deleted}
