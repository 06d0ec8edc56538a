"""Views derived from cached messages: thread rollups and mailbox listings.

Each message contributes edges to its thread and to each of its mailboxes.
When a message changes, the views on both ends of its old and new edges are
dropped; they are rebuilt from the cache the next time someone reads them.
References to threads or mailboxes that are not cached are fine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from mail_sync.cache.store import RecordCache
from mail_sync.models.message import MESSAGE_TYPE, Message
from mail_sync.models.status import has_data

logger = structlog.get_logger()

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ThreadRollup:
    """Aggregate state of the cached messages in one thread."""

    thread_id: str
    message_ids: tuple[str, ...]
    unread_count: int
    is_flagged: bool
    has_attachment: bool
    mailbox_ids: frozenset[str]
    participants: tuple[str, ...]
    latest_date: datetime | None


@dataclass(frozen=True)
class MailboxListing:
    """Cached messages in one mailbox, newest first."""

    mailbox_id: str
    message_ids: tuple[str, ...]
    unread_count: int


class ViewRegistry:
    """Tracks message -> thread/mailbox edges and caches derived views."""

    def __init__(self, cache: RecordCache, type_name: str = MESSAGE_TYPE) -> None:
        self._cache = cache
        self._type_name = type_name
        self._edges: dict[str, tuple[str | None, frozenset[str]]] = {}
        self._thread_members: dict[str, set[str]] = {}
        self._mailbox_members: dict[str, set[str]] = {}
        self._threads: dict[str, ThreadRollup] = {}
        self._mailboxes: dict[str, MailboxListing] = {}

    def track(self, message_id: str) -> None:
        """Re-read a message's edges from the cache and drop affected views."""
        entry = self._cache.get(self._type_name, message_id)
        old_thread, old_mailboxes = self._edges.pop(message_id, (None, frozenset()))
        self._unlink(message_id, old_thread, old_mailboxes)

        new_thread: str | None = None
        new_mailboxes: frozenset[str] = frozenset()
        if entry is not None and has_data(entry.status):
            new_thread = entry.properties.get("threadId")
            new_mailboxes = frozenset(entry.properties.get("mailboxIds") or ())
            self._edges[message_id] = (new_thread, new_mailboxes)
            if new_thread:
                self._thread_members.setdefault(new_thread, set()).add(message_id)
            for mailbox_id in new_mailboxes:
                self._mailbox_members.setdefault(mailbox_id, set()).add(message_id)

        for thread_id in {old_thread, new_thread}:
            if thread_id:
                self.invalidate_thread(thread_id)
        for mailbox_id in old_mailboxes | new_mailboxes:
            self.invalidate_mailbox(mailbox_id)

    def invalidate_thread(self, thread_id: str) -> None:
        self._threads.pop(thread_id, None)

    def invalidate_mailbox(self, mailbox_id: str) -> None:
        self._mailboxes.pop(mailbox_id, None)

    def invalidate_all(self) -> None:
        """Drop every computed view so each is rebuilt on next read."""
        self._threads.clear()
        self._mailboxes.clear()
        logger.debug("views_invalidated")

    def has_thread(self, thread_id: str) -> bool:
        return thread_id in self._threads

    def has_mailbox(self, mailbox_id: str) -> bool:
        return mailbox_id in self._mailboxes

    def thread(self, thread_id: str) -> ThreadRollup:
        rollup = self._threads.get(thread_id)
        if rollup is None:
            rollup = self._build_thread(thread_id)
            self._threads[thread_id] = rollup
        return rollup

    def mailbox(self, mailbox_id: str) -> MailboxListing:
        listing = self._mailboxes.get(mailbox_id)
        if listing is None:
            listing = self._build_mailbox(mailbox_id)
            self._mailboxes[mailbox_id] = listing
        return listing

    def _unlink(self, message_id: str, thread_id: str | None, mailbox_ids: frozenset[str]) -> None:
        if thread_id:
            _discard(self._thread_members, thread_id, message_id)
        for mailbox_id in mailbox_ids:
            _discard(self._mailbox_members, mailbox_id, message_id)

    def _messages(self, ids: set[str]) -> list[Message]:
        messages = []
        for message_id in ids:
            entry = self._cache.get(self._type_name, message_id)
            if entry is not None and has_data(entry.status):
                messages.append(Message.from_entry(entry))
        return messages

    def _build_thread(self, thread_id: str) -> ThreadRollup:
        messages = sorted(
            self._messages(self._thread_members.get(thread_id, set())),
            key=_by_date,
        )
        participants: list[str] = []
        for message in messages:
            if message.from_email and message.from_email not in participants:
                participants.append(message.from_email)

        logger.debug("thread_rollup_built", thread_id=thread_id, message_count=len(messages))
        return ThreadRollup(
            thread_id=thread_id,
            message_ids=tuple(m.id for m in messages),
            unread_count=sum(1 for m in messages if m.is_unread),
            is_flagged=any(m.is_flagged for m in messages),
            has_attachment=any(m.has_attachment for m in messages),
            mailbox_ids=frozenset(mid for m in messages for mid in m.mailbox_ids),
            participants=tuple(participants),
            latest_date=messages[-1].date if messages else None,
        )

    def _build_mailbox(self, mailbox_id: str) -> MailboxListing:
        messages = sorted(
            self._messages(self._mailbox_members.get(mailbox_id, set())),
            key=_by_date,
            reverse=True,
        )
        return MailboxListing(
            mailbox_id=mailbox_id,
            message_ids=tuple(m.id for m in messages),
            unread_count=sum(1 for m in messages if m.is_unread),
        )


def _discard(members: dict[str, set[str]], key: str, message_id: str) -> None:
    ids = members.get(key)
    if ids is None:
        return
    ids.discard(message_id)
    if not ids:
        del members[key]


def _by_date(message: Message) -> tuple[datetime, str]:
    date = message.date
    if date is None:
        return _OLDEST, message.id
    if date.tzinfo is None:
        # Naive timestamps are taken as UTC.
        date = date.replace(tzinfo=timezone.utc)
    return date, message.id
