"""Vault setup, unlock and password API endpoints."""

import base64
import binascii
import logging

from fastapi import APIRouter, Depends, HTTPException

from localvault.dependencies import get_vault_service
from localvault.exceptions import VaultError
from localvault.schemas.vault import (
    ChangePasswordRequest,
    KeyExport,
    PasswordRequest,
    SetupRequest,
    VaultStatus,
)
from localvault.services.vault_service import VaultService
from localvault.utils.error_handling import raise_for_vault_error

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/status", response_model=VaultStatus)
async def get_vault_status(vault: VaultService = Depends(get_vault_service)) -> VaultStatus:
    """Whether the vault is set up and unlocked."""
    return await vault.status()


@router.post("/setup", response_model=VaultStatus, status_code=201)
async def setup_vault(
    body: SetupRequest, vault: VaultService = Depends(get_vault_service)
) -> VaultStatus:
    """Create the master key, store it wrapped under the password and unlock.

    With key_material the vault is restored from an exported key instead
    of generating a new one.

    Raises:
        HTTPException: 409 if the vault is already set up, 422 for bad key material
    """
    key_material = None
    if body.key_material:
        try:
            key_material = base64.b64decode(body.key_material, validate=True)
        except binascii.Error:
            raise HTTPException(status_code=422, detail="key_material is not valid base64") from None
    try:
        await vault.setup(body.password, key_material=key_material)
    except VaultError as e:
        raise_for_vault_error(logger, e)
    return await vault.status()


@router.post("/unlock", response_model=VaultStatus)
async def unlock_vault(
    body: PasswordRequest, vault: VaultService = Depends(get_vault_service)
) -> VaultStatus:
    """Unwrap the stored master key with the password.

    Raises:
        HTTPException: 401 on a wrong password, 404 if the vault is not set up
    """
    try:
        await vault.unlock(body.password)
    except VaultError as e:
        raise_for_vault_error(logger, e)
    return await vault.status()


@router.post("/lock", response_model=VaultStatus)
async def lock_vault(vault: VaultService = Depends(get_vault_service)) -> VaultStatus:
    """Forget the in-memory master key. Running imports are paused."""
    await vault.lock()
    return await vault.status()


@router.post("/password", response_model=VaultStatus)
async def change_password(
    body: ChangePasswordRequest, vault: VaultService = Depends(get_vault_service)
) -> VaultStatus:
    """Re-wrap the master key under a new password."""
    try:
        await vault.change_password(body.current_password, body.new_password)
    except VaultError as e:
        raise_for_vault_error(logger, e)
    return await vault.status()


@router.post("/export", response_model=KeyExport)
async def export_key(
    body: PasswordRequest, vault: VaultService = Depends(get_vault_service)
) -> KeyExport:
    """Return the raw master key for an offline backup.

    The password is re-checked even though the vault is unlocked.

    Raises:
        HTTPException: 401 on a wrong password, 423 if the vault is locked
    """
    try:
        await vault.verify_password(body.password)
        raw = vault.export_key()
    except VaultError as e:
        raise_for_vault_error(logger, e)
    logger.warning("Master key exported for backup")
    return KeyExport(key_material=base64.b64encode(raw).decode("ascii"))
