"""Pydantic schemas for LocalVault."""

from localvault.schemas.imports import (
    ImportOptions,
    ImportProgress,
    ImportRequest,
    ImportStatus,
    ProgressCallback,
)
from localvault.schemas.auth import (
    AuthorizationResult,
    AuthStatus,
    CallbackParams,
    PendingAuthorization,
    TokenRecord,
)
from localvault.schemas.vault import (
    ChangePasswordRequest,
    KeyExport,
    PasswordRequest,
    SetupRequest,
    VaultStatus,
)
from localvault.schemas.sync import SyncMetadataSchema
from localvault.schemas.setting import SettingCategory, SettingSchema, SettingUpdate

__all__ = [
    "ImportOptions",
    "ImportProgress",
    "ImportRequest",
    "ImportStatus",
    "ProgressCallback",
    "AuthorizationResult",
    "AuthStatus",
    "CallbackParams",
    "PendingAuthorization",
    "TokenRecord",
    "ChangePasswordRequest",
    "KeyExport",
    "PasswordRequest",
    "SetupRequest",
    "VaultStatus",
    "SyncMetadataSchema",
    "SettingCategory",
    "SettingSchema",
    "SettingUpdate",
]
