"""Message record model and property tiers.

Message properties are fetched in two disjoint tiers. Header properties are
always fetched together; detail properties are fetched lazily and separately.
A record can be ready for headers without being ready for details.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from mail_sync.cache.store import CacheEntry

MESSAGE_TYPE = "Message"

HEADER_PROPERTIES: tuple[str, ...] = (
    "threadId",
    "mailboxIds",
    "isUnread",
    "isFlagged",
    "isAnswered",
    "isDraft",
    "hasAttachment",
    "from",
    "to",
    "subject",
    "date",
    "size",
    "preview",
)

DETAIL_PROPERTIES: tuple[str, ...] = (
    "blobId",
    "inReplyToMessageId",
    "headers.List-Id",
    "headers.List-Post",
    "cc",
    "bcc",
    "replyTo",
    "body",
    "attachments",
    "attachedMessages",
    "attachedInvites",
)

# The only header properties a message can change after creation.
MUTABLE_PROPERTIES: tuple[str, ...] = (
    "mailboxIds",
    "isUnread",
    "isFlagged",
    "isAnswered",
    "isDraft",
    "hasAttachment",
)


class PropertyTier(str, Enum):
    """Which tier of properties a records response carries."""

    HEADERS = "headers"
    DETAILS = "details"


class EmailAddress(BaseModel):
    """A name/email pair as used in from, to, cc, bcc and replyTo."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = Field(default=None, description="Display name")
    email: str = Field(default="", description="Email address")


class Message(BaseModel):
    """Typed, read-only view of a cached message record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(description="Server-assigned message ID")
    thread_id: str | None = Field(default=None, alias="threadId")
    mailbox_ids: list[str] = Field(default_factory=list, alias="mailboxIds")

    is_unread: bool = Field(default=False, alias="isUnread")
    is_flagged: bool = Field(default=False, alias="isFlagged")
    is_answered: bool = Field(default=False, alias="isAnswered")
    is_draft: bool = Field(default=False, alias="isDraft")
    has_attachment: bool = Field(default=False, alias="hasAttachment")

    from_: EmailAddress | None = Field(default=None, alias="from")
    to: list[EmailAddress] = Field(default_factory=list)
    subject: str = Field(default="")
    date: datetime | None = Field(default=None)
    size: int | None = Field(default=None)
    preview: str = Field(default="")

    # Detail tier
    blob_id: str | None = Field(default=None, alias="blobId")
    in_reply_to_message_id: str | None = Field(default=None, alias="inReplyToMessageId")
    headers: dict[str, Any] = Field(default_factory=dict)
    cc: list[EmailAddress] = Field(default_factory=list)
    bcc: list[EmailAddress] = Field(default_factory=list)
    reply_to: EmailAddress | None = Field(default=None, alias="replyTo")
    text_body: str | None = Field(default=None, alias="textBody")
    html_body: str | None = Field(default=None, alias="htmlBody")
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    attached_messages: dict[str, Any] = Field(default_factory=dict, alias="attachedMessages")
    attached_invites: dict[str, Any] = Field(default_factory=dict, alias="attachedInvites")

    @property
    def from_name(self) -> str:
        if self.from_ is None:
            return ""
        return self.from_.name or self.from_.email.split("@")[0]

    @property
    def from_email(self) -> str:
        return self.from_.email if self.from_ is not None else ""

    def is_in(self, *mailbox_ids: str) -> bool:
        """Return True if the message is in any of the given mailboxes."""
        return any(mailbox_id in self.mailbox_ids for mailbox_id in mailbox_ids)

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> Message:
        """Build a message from a cache entry's raw properties."""
        # JSON null means "unset" for every typed field here.
        properties = {k: v for k, v in entry.properties.items() if v is not None}
        return cls.model_validate({**properties, "id": entry.id})
