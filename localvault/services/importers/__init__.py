"""Category importers."""

from localvault.categories import DataCategory
from localvault.services.importers.base import (
    BaseImporter,
    CancellationToken,
    ContentStrategy,
    ImporterConfig,
    choose_content_strategy,
)
from localvault.services.importers.calendar import CalendarImporter
from localvault.services.importers.drive import DriveImporter
from localvault.services.importers.gmail import GmailImporter
from localvault.services.importers.photos import PhotosImporter

IMPORTERS: dict[DataCategory, type[BaseImporter]] = {
    DataCategory.GMAIL: GmailImporter,
    DataCategory.DRIVE: DriveImporter,
    DataCategory.PHOTOS: PhotosImporter,
    DataCategory.CALENDAR: CalendarImporter,
}


def importer_for(category: DataCategory | str) -> type[BaseImporter]:
    """Return the importer class for a category."""
    return IMPORTERS[DataCategory(category)]


__all__ = [
    "BaseImporter",
    "CalendarImporter",
    "CancellationToken",
    "ContentStrategy",
    "DriveImporter",
    "GmailImporter",
    "IMPORTERS",
    "ImporterConfig",
    "PhotosImporter",
    "choose_content_strategy",
    "importer_for",
]
