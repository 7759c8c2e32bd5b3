"""Importable data categories and the Google scopes they require."""

from enum import Enum


class DataCategory(str, Enum):
    """Remote data categories the vault can import."""

    GMAIL = "gmail"
    DRIVE = "drive"
    PHOTOS = "photos"
    CALENDAR = "calendar"


# One read-only scope per category
CATEGORY_SCOPES: dict[DataCategory, str] = {
    DataCategory.GMAIL: "https://www.googleapis.com/auth/gmail.readonly",
    DataCategory.DRIVE: "https://www.googleapis.com/auth/drive.readonly",
    DataCategory.PHOTOS: "https://www.googleapis.com/auth/photoslibrary.readonly",
    DataCategory.CALENDAR: "https://www.googleapis.com/auth/calendar.readonly",
}

# Always requested, regardless of the selected categories
BASE_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
)


def scopes_for(categories) -> list[str]:
    """Return the minimal scope list covering the given categories.

    Base identity scopes come first, followed by one scope per distinct
    category in the order given.
    """
    scopes = list(BASE_SCOPES)
    for category in categories:
        scope = CATEGORY_SCOPES[DataCategory(category)]
        if scope not in scopes:
            scopes.append(scope)
    return scopes


def categories_for(scopes) -> list[DataCategory]:
    """Return the categories whose scope appears in a granted scope list."""
    granted = set(scopes)
    return [category for category, scope in CATEGORY_SCOPES.items() if scope in granted]
