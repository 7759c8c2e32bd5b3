"""Settings API schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class SettingSchema(BaseModel):
    """A stored tunable as returned by the API."""

    key: str
    value: str = Field(..., description="Raw string value; numeric settings are parsed on read")
    category: str = Field(..., description="imports, oauth or security")
    description: str | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class SettingUpdate(BaseModel):
    """New value for one setting; blank resets numeric delays to their default."""

    value: str = Field(..., max_length=256)


class SettingCategory(BaseModel):
    """Settings of one category, ordered by key."""

    category: str
    settings: list[SettingSchema]
