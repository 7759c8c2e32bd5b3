"""Google authorization API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from localvault.dependencies import get_vault_service
from localvault.exceptions import VaultError
from localvault.schemas.auth import AuthorizationResult, AuthStatus, CallbackParams
from localvault.services.oauth_client import CALLBACK_PATH
from localvault.services.vault_service import VaultService
from localvault.utils.error_handling import raise_for_vault_error, safe_error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth/google")

# Mounted at the application root: the redirect URI registered with Google
callback_router = APIRouter(tags=["oauth"])


def _parse_categories(categories: str) -> list[str]:
    return [c.strip() for c in categories.split(",") if c.strip()]


@router.get("/authorize")
async def authorize(
    categories: str = Query("", description="Comma separated data categories"),
    vault: VaultService = Depends(get_vault_service),
) -> RedirectResponse:
    """Start authorization and redirect to Google's consent screen.

    Raises:
        HTTPException: 422 if no (or an unknown) category is given
    """
    try:
        url = await vault.begin_authorization(_parse_categories(categories))
    except VaultError as e:
        raise_for_vault_error(logger, e)
    except ValueError as e:
        # Unknown category or missing client configuration
        safe_error_response(logger, e, "Invalid authorization request", status_code=422, log_level="warning")
    return RedirectResponse(url=url, status_code=307)


@callback_router.get(CALLBACK_PATH, response_model=AuthorizationResult)
async def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    vault: VaultService = Depends(get_vault_service),
) -> AuthorizationResult:
    """Complete authorization from Google's redirect.

    Raises:
        HTTPException: 400 on a state mismatch, 423 if the vault is locked
    """
    params = CallbackParams(code=code, state=state, error=error, error_description=error_description)
    try:
        return await vault.complete_authorization(params)
    except VaultError as e:
        raise_for_vault_error(logger, e)


@router.get("/status", response_model=AuthStatus)
async def auth_status(vault: VaultService = Depends(get_vault_service)) -> AuthStatus:
    """Authenticated flag, granted scopes and authorized categories."""
    try:
        return await vault.auth_status()
    except ValueError as e:
        safe_error_response(logger, e, "OAuth client is not configured", status_code=503)


@router.post("/revoke")
async def revoke(vault: VaultService = Depends(get_vault_service)) -> dict:
    """Revoke access remotely (best effort) and delete the stored tokens."""
    try:
        revoked = await vault.sign_out()
    except VaultError as e:
        raise_for_vault_error(logger, e)
    except ValueError as e:
        safe_error_response(logger, e, "OAuth client is not configured", status_code=503)
    if not revoked:
        logger.warning("Remote revocation failed; local tokens were deleted anyway")
    return {"success": True, "remote_revoked": revoked}


@router.get("/user")
async def user_info(vault: VaultService = Depends(get_vault_service)) -> dict:
    """Email, name and picture of the connected Google account."""
    try:
        client = await vault.auth_client()
        info = await client.get_user_info(vault.require_master_key())
    except VaultError as e:
        raise_for_vault_error(logger, e)
    if info is None:
        raise HTTPException(status_code=401, detail="Not authenticated with Google")
    return info
