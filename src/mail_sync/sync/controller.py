"""Adaptive incremental sync controller for messages.

The controller decides what to ask the server for and when:

* ``fetch`` loads header properties for records that lack them.
* ``refresh(ids)`` reloads only the mutable properties of known records.
* ``refresh()`` pulls "updates since cursor" rounds until the server has no
  more, escalating the batch policy while it keeps reporting more. If the
  server cannot calculate changes from our cursor, or escalation runs out,
  the whole message cache is marked obsolete and the cursor jumps to the
  server's current state.
* ``commit`` sends optimistically applied local changes and reconciles the
  server's answer.

Transport errors are never retried here; they propagate with cursor and
policy untouched.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from typing import Any

import structlog

from mail_sync.cache.store import RecordCache
from mail_sync.exceptions import (
    MailSyncError,
    MethodError,
    UnexpectedResponseError,
)
from mail_sync.jmap.client import MethodResponse, Transport
from mail_sync.jmap.parsing import (
    CANNOT_CALCULATE_CHANGES,
    MessagesSet,
    MessageUpdates,
    decode,
    decode_messages,
    find_response,
    raise_for_error,
)
from mail_sync.models.message import (
    DETAIL_PROPERTIES,
    HEADER_PROPERTIES,
    MESSAGE_TYPE,
    MUTABLE_PROPERTIES,
    Message,
    PropertyTier,
)
from mail_sync.models.results import CommitResult, SyncResult
from mail_sync.models.status import RecordStatus, has_data
from mail_sync.sync.diff import DiffApplier
from mail_sync.sync.mutations import PendingChanges
from mail_sync.sync.policy import DEFAULT_POLICY, UpdatePolicy, escalate
from mail_sync.sync.views import MailboxListing, ThreadRollup, ViewRegistry

logger = structlog.get_logger()

_NEEDS_HEADERS = frozenset({RecordStatus.EMPTY, RecordStatus.PARTIAL})


class MessageSyncController:
    """Keeps cached messages consistent with the server.

    At most one update round is in flight at a time; concurrent ``refresh()``
    calls wait for the round already running.
    """

    type_name = MESSAGE_TYPE

    def __init__(
        self,
        transport: Transport,
        cache: RecordCache | None = None,
        views: ViewRegistry | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            transport: Delivers method calls to the server.
            cache: Record cache to keep in sync. If None, creates an empty one.
            views: Derived views over the cache. If None, creates new ones.
        """
        self.cache = cache or RecordCache()
        self.views = views or ViewRegistry(self.cache, self.type_name)
        self.applier = DiffApplier(self.cache, self.views, self.type_name)
        self._transport = transport
        self._policy = DEFAULT_POLICY
        self._update_round: asyncio.Task[SyncResult] | None = None
        self._pending = PendingChanges()
        self._closed = False
        logger.info("message_sync_controller_initialized")

    @property
    def policy(self) -> UpdatePolicy:
        return self._policy

    @property
    def state(self) -> str | None:
        return self.cache.get_cursor(self.type_name)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_pending_changes(self) -> bool:
        return not self._pending.is_empty

    def close(self) -> None:
        """Tear down the controller. Responses still in flight are discarded."""
        self._closed = True
        logger.info("message_sync_controller_closed")

    # Fetching

    async def fetch(self, ids: Iterable[str]) -> SyncResult:
        """Fetch header properties for records that lack them.

        Ids with no data, or with only some merged properties (PARTIAL), are
        requested; the rest are skipped. If the request fails or is cancelled
        the ids that were loading go back to EMPTY so the next access retries
        them.

        Raises:
            TransportError: If the request fails.
            MethodError: If the server answers with an error.
            UnexpectedResponseError: If the response is malformed.
        """
        wanted = [
            record_id
            for record_id in dict.fromkeys(ids)
            if self.cache.get_status(self.type_name, record_id) in _NEEDS_HEADERS
        ]
        if not wanted:
            return SyncResult(state=self.state)

        self.applier.mark_loading(wanted)
        logger.info("message_fetch_started", count=len(wanted))

        try:
            responses = await self._call(
                "getMessages", {"ids": wanted, "properties": list(HEADER_PROPERTIES)}
            )
            if responses is None:
                return SyncResult(state=self.state)
            envelope = decode_messages(self._require(responses, "messages"), "records")

            with self.applier.batch() as applier:
                fetched = applier.apply_records(envelope.records, PropertyTier.HEADERS)
                removed = applier.remove(envelope.not_found)
                self._adopt_state(envelope.state)
        except BaseException:
            if not self._closed:
                self.applier.fetch_failed(wanted)
            raise

        answered = set(fetched) | set(envelope.not_found)
        missing = [record_id for record_id in wanted if record_id not in answered]
        if missing:
            logger.warning("message_fetch_incomplete", missing=missing)
            self.applier.fetch_failed(missing)

        logger.info("message_fetch_completed", fetched=len(fetched), not_found=len(removed))
        return SyncResult(rounds=1, fetched=fetched, removed=removed, state=self.state)

    async def fetch_details(self, ids: Iterable[str]) -> SyncResult:
        """Fetch detail properties for messages whose details are not loaded.

        Details already loading are not requested again. On failure the details
        tier goes back to EMPTY.
        """
        wanted = []
        for record_id in dict.fromkeys(ids):
            entry = self.cache.get(self.type_name, record_id)
            if entry is None or (
                entry.details_status is RecordStatus.EMPTY and entry.status is not RecordStatus.NEW
            ):
                wanted.append(record_id)
        if not wanted:
            return SyncResult(state=self.state)

        self.applier.mark_details_loading(wanted)
        logger.info("message_details_fetch_started", count=len(wanted))

        try:
            responses = await self._call(
                "getMessages", {"ids": wanted, "properties": list(DETAIL_PROPERTIES)}
            )
            if responses is None:
                return SyncResult(state=self.state)
            envelope = decode_messages(self._require(responses, "messages"), "records")

            with self.applier.batch() as applier:
                fetched = applier.apply_records(envelope.records, PropertyTier.DETAILS)
                removed = applier.remove(envelope.not_found)
        except BaseException:
            if not self._closed:
                self.applier.details_failed(wanted)
            raise

        self.applier.details_failed(wanted)
        return SyncResult(rounds=1, fetched=fetched, removed=removed, state=self.state)

    async def refresh(self, ids: Iterable[str] | None = None) -> SyncResult:
        """Bring cached messages up to date.

        Args:
            ids: Refetch the mutable properties of exactly these records. If
                None, pull updates since the current cursor.

        Raises:
            TransportError: If a request fails.
            MethodError: If the server answers with an error other than
                ``cannotCalculateChanges``.
            UnexpectedResponseError: If a response is malformed.
        """
        if ids is not None:
            return await self._refresh_records(list(dict.fromkeys(ids)))

        if self._update_round is not None and not self._update_round.done():
            logger.info("message_update_round_coalesced")
            return await asyncio.shield(self._update_round)

        self._update_round = asyncio.ensure_future(self._run_update_rounds())
        return await asyncio.shield(self._update_round)

    async def _refresh_records(self, ids: list[str]) -> SyncResult:
        ids = [
            record_id
            for record_id in ids
            if self.cache.get_status(self.type_name, record_id) is not RecordStatus.NEW
        ]
        if not ids:
            return SyncResult(state=self.state)

        logger.info("message_refresh_started", count=len(ids))
        responses = await self._call(
            "getMessages", {"ids": ids, "properties": list(MUTABLE_PROPERTIES)}
        )
        if responses is None:
            return SyncResult(state=self.state)
        envelope = decode_messages(self._require(responses, "messages"), "partial")

        with self.applier.batch() as applier:
            merged = applier.apply_partial(envelope.updates)
            removed = applier.remove(envelope.not_found)
        return SyncResult(rounds=1, changed=merged, removed=removed, state=self.state)

    async def _run_update_rounds(self) -> SyncResult:
        result = SyncResult(state=self.state)

        while True:
            since_state = self.state
            if since_state is None:
                logger.warning("message_updates_skipped", reason="no_state")
                return result

            policy = self._policy
            logger.info(
                "message_updates_requested",
                since_state=since_state,
                max_changes=policy.max_changes,
                fetch_records=policy.fetch_records,
            )
            responses = await self._call(
                "getMessageUpdates",
                {
                    "sinceState": since_state,
                    "maxChanges": policy.max_changes,
                    "fetchRecords": policy.fetch_records,
                    "fetchRecordProperties": (
                        list(HEADER_PROPERTIES) if policy.fetch_records else None
                    ),
                },
                check_errors=False,
            )
            if responses is None:
                return result
            result.rounds += 1

            if self.state != since_state:
                # A commit moved the cursor past our changes while we waited.
                logger.info(
                    "message_updates_discarded",
                    since_state=since_state,
                    state=self.state,
                )
                continue

            try:
                raise_for_error(responses)
            except MethodError as exc:
                if exc.type != CANNOT_CALCULATE_CHANGES:
                    raise
                logger.warning("message_updates_cannot_calculate_changes", since_state=since_state)
                self._recover(exc.arguments.get("newState"), result)
                return result

            updates = decode(MessageUpdates, self._require(responses, "messageUpdates"))
            if updates.old_state is not None and updates.old_state != since_state:
                raise UnexpectedResponseError(
                    f"Updates are from state {updates.old_state}, requested {since_state}"
                )
            records = find_response(responses, "messages") if policy.fetch_records else None
            envelope = decode_messages(records, "records") if records is not None else None

            with self.applier.batch() as applier:
                fetched = (
                    applier.apply_records(envelope.records, PropertyTier.HEADERS)
                    if envelope is not None
                    else []
                )
                _, removed = applier.apply_changes(updates.changed, updates.removed, fetched=fetched)
                if not policy.fetch_records:
                    applier.invalidate_views()
                self.cache.set_cursor(self.type_name, updates.new_state)

            result.fetched.extend(fetched)
            result.changed.extend(updates.changed)
            result.removed.extend(removed)
            result.state = updates.new_state
            logger.info(
                "message_updates_applied",
                new_state=updates.new_state,
                changed=len(updates.changed),
                removed=len(updates.removed),
                has_more_updates=updates.has_more_updates,
            )

            if not updates.has_more_updates:
                break

            next_policy = escalate(policy)
            if next_policy is None:
                logger.warning(
                    "message_update_escalation_exhausted",
                    changes=len(result.changed) + len(result.removed),
                )
                self._recover(updates.new_state, result)
                return result

            self._policy = next_policy
            logger.info(
                "message_update_policy_escalated",
                max_changes=next_policy.max_changes,
                fetch_records=next_policy.fetch_records,
            )

        self._policy = DEFAULT_POLICY
        return result

    def _recover(self, new_state: str | None, result: SyncResult) -> None:
        with self.applier.batch() as applier:
            obsoleted = applier.invalidate_all()
            self.cache.set_cursor(self.type_name, new_state)
        self._policy = DEFAULT_POLICY

        result.recovered = True
        result.state = new_state
        logger.warning(
            "message_cache_invalidated",
            obsoleted=len(obsoleted),
            new_state=new_state,
        )

    # Local changes

    def create(self, properties: dict[str, Any]) -> str:
        """Create a message locally; it is sent on the next commit.

        Returns:
            The temporary local id of the new message.
        """
        local_id = f"local-{uuid.uuid4().hex}"
        properties = {k: v for k, v in properties.items() if k != "id"}
        self.applier.create_local(local_id, properties)
        self._pending.created[local_id] = properties
        return local_id

    def update(self, record_id: str, changes: dict[str, Any]) -> None:
        """Change mutable properties of a message locally.

        Raises:
            UnknownRecordError: If the message is not cached.
            ValueError: If a property other than mailboxIds or a flag is
                changed on a message the server already has.
        """
        if record_id in self._pending.created:
            self.applier.update_local(record_id, changes)
            self._pending.created[record_id].update(changes)
            return

        immutable = set(changes) - set(MUTABLE_PROPERTIES)
        if immutable:
            raise ValueError(f"Properties cannot be changed: {sorted(immutable)}")

        previous = self.applier.update_local(record_id, changes)
        originals = self._pending.originals.setdefault(record_id, {})
        for key, value in previous.items():
            originals.setdefault(key, value)
        self._pending.updated.setdefault(record_id, {}).update(changes)

    def destroy(self, record_id: str) -> None:
        """Remove a message locally; the server is told on the next commit.

        Raises:
            UnknownRecordError: If the message is not cached.
        """
        entry = self.applier.destroy_local(record_id)
        if self._pending.created.pop(record_id, None) is not None:
            return
        self._pending.updated.pop(record_id, None)
        self._pending.destroyed[record_id] = entry

    async def commit(self) -> CommitResult:
        """Send pending local changes and reconcile the server's answer.

        If the request fails the changes stay pending for the next commit.
        Updates the server refused are rolled back and refetched.
        """
        if self._pending.is_empty:
            return CommitResult()

        changes, self._pending = self._pending, PendingChanges()
        logger.info(
            "message_commit_started",
            created=len(changes.created),
            updated=len(changes.updated),
            destroyed=len(changes.destroyed),
        )

        try:
            responses = await self._call("setMessages", changes.to_arguments())
            if responses is None:
                return CommitResult()
            result = decode(MessagesSet, self._require(responses, "messagesSet"))
        except MailSyncError:
            self._pending = self._pending.merged_after(changes)
            raise

        with self.applier.batch() as applier:
            outcome = applier.apply_commit(result, changes)
            if (
                result.new_state is not None
                and result.old_state is not None
                and result.old_state == self.state
            ):
                self.cache.set_cursor(self.type_name, result.new_state)

        for local_id, server_id in outcome.created.items():
            self._pending.rekey(local_id, server_id, result.created[local_id])

        logger.info("message_commit_completed", created=len(outcome.created), rejected=len(outcome.rejected))

        refetch = [record_id for record_id in result.not_updated if record_id in changes.updated]
        if refetch:
            await self.refresh(refetch)
        return outcome

    # Reading

    async def get_message(self, record_id: str) -> Message | None:
        """Return a message, loading it first if needed.

        Messages without header properties are fetched; obsolete ones have
        their mutable properties refreshed.
        """
        status = self.cache.get_status(self.type_name, record_id)
        if status in _NEEDS_HEADERS:
            await self.fetch([record_id])
        elif status is RecordStatus.OBSOLETE:
            await self.refresh([record_id])

        entry = self.cache.get(self.type_name, record_id)
        if entry is None or not has_data(entry.status):
            return None
        return Message.from_entry(entry)

    def thread(self, thread_id: str) -> ThreadRollup:
        return self.views.thread(thread_id)

    def mailbox(self, mailbox_id: str) -> MailboxListing:
        return self.views.mailbox(mailbox_id)

    # Transport

    async def _call(
        self,
        method: str,
        arguments: dict[str, Any],
        check_errors: bool = True,
    ) -> list[MethodResponse] | None:
        if self._closed:
            raise MailSyncError("Sync controller is closed")

        responses = await self._transport.call(method, arguments)
        if self._closed:
            logger.info("response_dropped", method=method)
            return None
        if check_errors:
            raise_for_error(responses)
        return responses

    def _require(self, responses: list[MethodResponse], name: str) -> dict[str, Any]:
        arguments = find_response(responses, name)
        if arguments is None:
            names = [response_name for response_name, _ in responses]
            raise UnexpectedResponseError(f"Expected a '{name}' response, got {names}")
        return arguments

    def _adopt_state(self, state: str | None) -> None:
        if state is not None and self.state is None:
            self.cache.set_cursor(self.type_name, state)
