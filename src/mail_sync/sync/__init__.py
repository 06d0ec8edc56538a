"""Incremental sync of cached messages with the server."""

from .controller import MessageSyncController
from .diff import DiffApplier
from .policy import DEFAULT_POLICY, UpdatePolicy, escalate
from .views import MailboxListing, ThreadRollup, ViewRegistry

__all__ = [
    "DEFAULT_POLICY",
    "DiffApplier",
    "MailboxListing",
    "MessageSyncController",
    "ThreadRollup",
    "UpdatePolicy",
    "ViewRegistry",
    "escalate",
]
