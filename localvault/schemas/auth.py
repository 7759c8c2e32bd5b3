"""Delegated authorization schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from localvault.categories import DataCategory
from localvault.services.crypto import EncryptedBlob


class TokenRecord(BaseModel):
    """Encrypted token pair at rest.

    expires_at is epoch milliseconds. Tokens are EncryptedBlobs under the
    "tokens" service key.
    """

    encrypted_access_token: EncryptedBlob
    encrypted_refresh_token: EncryptedBlob | None = None
    expires_at: int
    scopes: list[str] = Field(default_factory=list)

    model_config = {"arbitrary_types_allowed": True, "frozen": True}

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the at-rest wire shape."""
        return {
            "encryptedAccessToken": self.encrypted_access_token.to_dict(),
            "encryptedRefreshToken": (
                self.encrypted_refresh_token.to_dict() if self.encrypted_refresh_token else None
            ),
            "expiresAt": self.expires_at,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "TokenRecord":
        """Deserialize from the at-rest wire shape."""
        refresh = data.get("encryptedRefreshToken")
        return cls(
            encrypted_access_token=EncryptedBlob.from_dict(data["encryptedAccessToken"]),
            encrypted_refresh_token=EncryptedBlob.from_dict(refresh) if refresh else None,
            expires_at=int(data["expiresAt"]),
            scopes=list(data.get("scopes") or []),
        )


class PendingAuthorization(BaseModel):
    """In-flight authorization state kept between redirect and callback."""

    state: str
    verifier: str
    redirect_uri: str
    categories: list[DataCategory]
    created_at: datetime | None = None


class CallbackParams(BaseModel):
    """Query parameters of the provider's redirect back to us."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None


class AuthorizationResult(BaseModel):
    """Outcome of completing an authorization."""

    success: bool
    scopes: list[str] = Field(default_factory=list)
    error: str | None = None


class AuthStatus(BaseModel):
    """Current authorization state as seen by the API."""

    authenticated: bool
    scopes: list[str] = Field(default_factory=list)
    categories: list[DataCategory] = Field(default_factory=list)
