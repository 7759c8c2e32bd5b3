"""LocalVault - encrypted local copy of your Google data."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from localvault import __version__
from localvault.db import AsyncSessionLocal, init_db
from localvault.exceptions import VaultError
from localvault.services.settings_service import SettingsService
from localvault.services.vault_service import VaultService
from localvault.utils.error_handling import status_for
from localvault.utils.security import sanitize_log_message

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Local frontends only; the vault never needs to be reachable cross-site
LOCAL_ORIGINS = [
    f"http://{host}:{port}"
    for host in ("localhost", "127.0.0.1")
    for port in (3000, 5173, 8788)
]


def cors_origins_from_env() -> list[str]:
    """Allowed CORS origins: CORS_ORIGINS (comma separated) or LOCAL_ORIGINS."""
    raw = os.getenv("CORS_ORIGINS", "").strip()
    if not raw:
        return LOCAL_ORIGINS
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if "*" in origins:
        logger.warning("CORS_ORIGINS contains '*'; any site can call the vault API")
        return ["*"]
    return origins


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and settings, then hold one VaultService for the process."""
    logger.info("Starting LocalVault %s", __version__)
    await init_db()
    async with AsyncSessionLocal() as db:
        await SettingsService.init_defaults(db)

    vault = VaultService(AsyncSessionLocal)
    app.state.vault = vault

    if not await vault.is_initialized():
        logger.info("Vault not set up yet; POST /api/v1/vault/setup to create it")
    if not os.getenv("LOCALVAULT_GOOGLE_CLIENT_ID"):
        logger.warning("LOCALVAULT_GOOGLE_CLIENT_ID is not set; Google authorization is unavailable")

    try:
        yield
    finally:
        await vault.aclose()
        logger.info("LocalVault stopped")


app = FastAPI(
    title="LocalVault",
    description="Encrypted local vault for Gmail, Drive, Photos and Calendar data",
    version=__version__,
    lifespan=lifespan,
)

cors_origins = cors_origins_from_env()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept"],
)


@app.exception_handler(VaultError)
async def vault_error_handler(request: Request, exc: VaultError):
    """Vault errors not translated by a route still get their mapped status."""
    status_code = status_for(exc)
    logger.warning(
        "%s on %s %s: %s",
        type(exc).__name__, request.method, request.url.path, sanitize_log_message(str(exc)),
    )
    detail = str(exc) if status_code != 500 else "Vault operation failed"
    return JSONResponse(status_code=status_code, content={"detail": detail or type(exc).__name__})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors in full; return a generic message."""
    logger.error(
        "Unhandled %s on %s %s: %s",
        type(exc).__name__, request.method, request.url.path, sanitize_log_message(str(exc)),
        exc_info=True,
    )
    content = {"detail": "An internal error occurred"}
    if os.getenv("LOCALVAULT_DEBUG", "false").lower() == "true":
        content.update(detail=str(exc), type=type(exc).__name__)
    return JSONResponse(status_code=500, content=content)


@app.get("/health")
async def health_check():
    """Liveness check; does not touch the vault or the database."""
    return {"status": "healthy", "service": "localvault", "version": __version__}


from localvault.api import api_router, callback_router  # noqa: E402

app.include_router(api_router)
app.include_router(callback_router)
