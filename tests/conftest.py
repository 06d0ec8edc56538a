"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import copy
from collections import deque
from typing import Any

import pytest

from mail_sync.cache import RecordCache
from mail_sync.models import MESSAGE_TYPE, RecordStatus


class FakeTransport:
    """Scripted transport: answers calls with queued responses, in order.

    Each queued item is a list of ``(name, arguments)`` responses or an
    exception to raise. When ``gate`` is set, calls wait for it first.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.gate: asyncio.Event | None = None
        self._queue: deque[Any] = deque()

    def queue(self, *responses: tuple[str, dict[str, Any]]) -> None:
        self._queue.append(list(responses))

    def fail(self, exc: Exception) -> None:
        self._queue.append(exc)

    async def call(self, method: str, arguments: dict[str, Any]) -> list[tuple[str, dict[str, Any]]]:
        self.calls.append((method, copy.deepcopy(arguments)))
        if self.gate is not None:
            await self.gate.wait()
        item = self._queue.popleft()
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def mock_settings():
    """Provide mock settings for testing."""
    from mail_sync.config import Settings

    return Settings(
        api_url="https://jmap.example.com/api/",
        api_token="test-token",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_record():
    """Build a header-tier message record as the server sends it."""

    def _make(message_id: str, **overrides: Any) -> dict[str, Any]:
        record = {
            "id": message_id,
            "threadId": "t1",
            "mailboxIds": ["inbox"],
            "isUnread": True,
            "isFlagged": False,
            "isAnswered": False,
            "isDraft": False,
            "hasAttachment": False,
            "from": {"name": "Alice", "email": "alice@example.com"},
            "to": [{"name": "Bob", "email": "bob@example.com"}],
            "subject": f"Subject {message_id}",
            "date": "2025-01-01T10:00:00Z",
            "size": 1024,
            "preview": "Hello",
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def cache(make_record) -> RecordCache:
    """A cache holding three ready messages at state S0."""
    cache = RecordCache()
    for index, message_id in enumerate(["m1", "m2", "m3"]):
        record = make_record(message_id, date=f"2025-01-0{index + 1}T10:00:00Z")
        del record["id"]
        cache.put(MESSAGE_TYPE, message_id, record, RecordStatus.READY)
    cache.set_cursor(MESSAGE_TYPE, "S0")
    return cache
