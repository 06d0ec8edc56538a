"""Data models for Mail Sync."""

from mail_sync.models.message import (
    DETAIL_PROPERTIES,
    HEADER_PROPERTIES,
    MESSAGE_TYPE,
    MUTABLE_PROPERTIES,
    EmailAddress,
    Message,
    PropertyTier,
)
from mail_sync.models.results import CommitResult, SyncResult
from mail_sync.models.status import RecordStatus, StatusEvent, has_data, transition

__all__ = [
    "DETAIL_PROPERTIES",
    "HEADER_PROPERTIES",
    "MESSAGE_TYPE",
    "MUTABLE_PROPERTIES",
    "CommitResult",
    "EmailAddress",
    "Message",
    "PropertyTier",
    "RecordStatus",
    "StatusEvent",
    "SyncResult",
    "has_data",
    "transition",
]
