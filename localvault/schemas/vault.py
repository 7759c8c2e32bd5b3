"""Vault setup and unlock schemas."""

import re

from pydantic import BaseModel, Field, field_validator


def _check_password_strength(v: str) -> str:
    if not re.search(r"[A-Za-z]", v) or not re.search(r"\d", v):
        raise ValueError("Password must contain at least one letter and one digit")
    return v


class PasswordRequest(BaseModel):
    """Password for unlocking the vault."""

    password: str = Field(..., min_length=1, max_length=256)


class SetupRequest(BaseModel):
    """Initial vault setup, optionally restoring an exported master key."""

    password: str = Field(..., min_length=8, max_length=256)
    key_material: str | None = Field(None, description="Base64 master key from a previous export")

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password strength."""
        return _check_password_strength(v)


class ChangePasswordRequest(BaseModel):
    """Re-wrap the master key under a new password."""

    current_password: str = Field(..., min_length=1, max_length=256)
    new_password: str = Field(..., min_length=8, max_length=256)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        """Validate new password strength."""
        return _check_password_strength(v)


class VaultStatus(BaseModel):
    """Whether a vault exists and whether it is currently unlocked."""

    initialized: bool
    unlocked: bool


class KeyExport(BaseModel):
    """Raw master key for an offline backup."""

    key_material: str = Field(..., description="Base64 of the 32 raw key bytes")
