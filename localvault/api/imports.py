"""Import job API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from localvault.categories import DataCategory
from localvault.dependencies import get_category, get_vault_service
from localvault.exceptions import VaultError
from localvault.schemas.imports import ImportProgress, ImportRequest
from localvault.services.vault_service import VaultService
from localvault.utils.error_handling import raise_for_vault_error

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{category}", response_model=ImportProgress, status_code=202)
async def start_import(
    body: ImportRequest | None = None,
    category: DataCategory = Depends(get_category),
    vault: VaultService = Depends(get_vault_service),
) -> ImportProgress:
    """Start a background import for a category.

    Progress is available from GET /imports/{category} and the event stream.

    Raises:
        HTTPException: 409 if the category is already importing, 423 if locked
    """
    options = (body or ImportRequest()).to_options()
    try:
        return await vault.start_import(category, options)
    except VaultError as e:
        raise_for_vault_error(logger, e)


@router.get("/{category}", response_model=ImportProgress)
async def get_import_progress(
    category: DataCategory = Depends(get_category),
    vault: VaultService = Depends(get_vault_service),
) -> ImportProgress:
    """Latest progress snapshot for a category."""
    return vault.get_progress(category)


@router.post("/{category}/cancel")
async def cancel_import(
    category: DataCategory = Depends(get_category),
    vault: VaultService = Depends(get_vault_service),
) -> dict:
    """Pause a running import. Items imported so far are kept."""
    if not vault.cancel_import(category):
        raise HTTPException(status_code=404, detail=f"No {category.value} import is running")
    return {"success": True, "category": category.value}


@router.get("/{category}/sources")
async def list_sources(
    category: DataCategory = Depends(get_category),
    parent_id: str | None = Query(None, description="Parent folder (drive only)"),
    vault: VaultService = Depends(get_vault_service),
) -> list[dict]:
    """List what can be imported: labels, folders, albums or calendars."""
    try:
        importer = await vault.importer(category)
        if category == DataCategory.GMAIL:
            return await importer.list_labels()
        if category == DataCategory.DRIVE:
            return await importer.list_folders(parent_id)
        if category == DataCategory.PHOTOS:
            return await importer.list_albums()
        return await importer.list_calendars()
    except VaultError as e:
        raise_for_vault_error(logger, e)
