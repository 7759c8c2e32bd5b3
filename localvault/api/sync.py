"""Sync status and local data API endpoints."""

import logging

from fastapi import APIRouter, Depends

from localvault.categories import DataCategory
from localvault.dependencies import get_category, get_vault_service
from localvault.exceptions import VaultError
from localvault.schemas.sync import SyncMetadataSchema
from localvault.services.vault_service import VaultService
from localvault.utils.error_handling import raise_for_vault_error

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/sync", response_model=list[SyncMetadataSchema])
async def get_sync_status(vault: VaultService = Depends(get_vault_service)) -> list[SyncMetadataSchema]:
    """Sync metadata for every category that has been imported."""
    rows = await vault.sync_status()
    return [SyncMetadataSchema.model_validate(row) for row in rows]


@router.delete("/data/{category}")
async def clear_category(
    category: DataCategory = Depends(get_category),
    vault: VaultService = Depends(get_vault_service),
) -> dict:
    """Delete every local record of a category and reset its sync metadata."""
    try:
        deleted = await vault.clear_category(category)
    except VaultError as e:
        raise_for_vault_error(logger, e)
    return {"success": True, "category": category.value, "deleted": deleted}
