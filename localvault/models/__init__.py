"""Database models for LocalVault."""

from localvault.models.setting import Setting
from localvault.models.ephemeral_entry import EphemeralEntry
from localvault.models.oauth_token import OAuthToken
from localvault.models.vault_key import VaultKey
from localvault.models.sync_metadata import SyncMetadata
from localvault.models.mail_message import MailMessage
from localvault.models.drive_document import DriveDocument, DocumentChunk
from localvault.models.photo_reference import PhotoReference
from localvault.models.calendar_event import CalendarEvent

__all__ = [
    "Setting",
    "EphemeralEntry",
    "OAuthToken",
    "VaultKey",
    "SyncMetadata",
    "MailMessage",
    "DriveDocument",
    "DocumentChunk",
    "PhotoReference",
    "CalendarEvent",
]
