"""API routers for LocalVault."""

from fastapi import APIRouter

from localvault.api import events, imports, oauth, settings, sync, vault
from localvault.api.oauth import callback_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(vault.router, prefix="/vault", tags=["vault"])
api_router.include_router(oauth.router, tags=["oauth"])
api_router.include_router(imports.router, prefix="/imports", tags=["imports"])
api_router.include_router(sync.router, tags=["sync"])
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])
api_router.include_router(events.router, tags=["events"])

__all__ = ["api_router", "callback_router"]
