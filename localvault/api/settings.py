"""Settings API endpoints."""

import logging
from itertools import groupby
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from localvault.db import get_db
from localvault.schemas.setting import SettingCategory, SettingSchema, SettingUpdate
from localvault.services.settings_service import SettingsService
from localvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=list[SettingSchema])
async def get_all_settings(
    category: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> list[SettingSchema]:
    """Get all settings, optionally filtered by category."""
    return await SettingsService.get_all(db, category)


@router.get("/categories", response_model=list[SettingCategory])
async def get_settings_by_category(db: AsyncSession = Depends(get_db)) -> list[SettingCategory]:
    """Get settings grouped by category."""
    settings = await SettingsService.get_all(db)
    return [
        SettingCategory(category=category, settings=list(group))
        for category, group in groupby(settings, key=lambda s: s.category)
    ]


@router.get("/{key}", response_model=SettingSchema)
async def get_setting(key: str, db: AsyncSession = Depends(get_db)) -> SettingSchema:
    """Get a specific setting by key."""
    settings = await SettingsService.get_all(db)
    setting = next((s for s in settings if s.key == key), None)
    if setting is None:
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found")
    return setting


@router.put("/{key}", response_model=SettingSchema)
async def update_setting(
    key: str,
    update: SettingUpdate,
    db: AsyncSession = Depends(get_db),
) -> SettingSchema:
    """Update a setting value.

    OAuth settings are read when the authorization client is first built,
    so changes to them apply after a restart.

    Raises:
        HTTPException: 404 for an unknown key, 422 for an out-of-range value
    """
    try:
        value = SettingsService.validate(key, update.value)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found") from None
    except ValueError as e:
        logger.warning("Rejected value for setting %s", sanitize_log_message(key))
        raise HTTPException(status_code=422, detail=str(e)) from None
    return await SettingsService.set(db, key, value)
