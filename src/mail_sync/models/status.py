"""Record status state machine.

Every cached record is in exactly one status. Status only changes through
:func:`transition`, a pure function of the current status and a sync event.
"""

from __future__ import annotations

from enum import Enum

from mail_sync.exceptions import InvalidTransitionError


class RecordStatus(str, Enum):
    """Status of a cached record (or of one property tier of it)."""

    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    PARTIAL = "partial"
    OBSOLETE = "obsolete"
    NEW = "new"


class StatusEvent(str, Enum):
    """Events that move a record between statuses."""

    FETCH_STARTED = "fetch_started"
    FETCH_FAILED = "fetch_failed"
    RECORDS_FETCHED = "records_fetched"
    PROPERTIES_MERGED = "properties_merged"
    CHANGED_ON_SERVER = "changed_on_server"
    INVALIDATED = "invalidated"
    CREATED_LOCALLY = "created_locally"
    COMMIT_CONFIRMED = "commit_confirmed"


_S = RecordStatus
_E = StatusEvent

_TRANSITIONS: dict[tuple[RecordStatus, StatusEvent], RecordStatus] = {
    (_S.EMPTY, _E.FETCH_STARTED): _S.LOADING,
    (_S.LOADING, _E.FETCH_FAILED): _S.EMPTY,
    # A full record replaces whatever we knew about the header tier.
    (_S.EMPTY, _E.RECORDS_FETCHED): _S.READY,
    (_S.LOADING, _E.RECORDS_FETCHED): _S.READY,
    (_S.READY, _E.RECORDS_FETCHED): _S.READY,
    (_S.PARTIAL, _E.RECORDS_FETCHED): _S.READY,
    (_S.OBSOLETE, _E.RECORDS_FETCHED): _S.READY,
    # Only mutable properties arrive; envelope fields of a message never change.
    (_S.EMPTY, _E.PROPERTIES_MERGED): _S.PARTIAL,
    (_S.LOADING, _E.PROPERTIES_MERGED): _S.PARTIAL,
    (_S.PARTIAL, _E.PROPERTIES_MERGED): _S.PARTIAL,
    (_S.READY, _E.PROPERTIES_MERGED): _S.READY,
    (_S.OBSOLETE, _E.PROPERTIES_MERGED): _S.READY,
    (_S.NEW, _E.PROPERTIES_MERGED): _S.NEW,
    (_S.EMPTY, _E.CHANGED_ON_SERVER): _S.EMPTY,
    (_S.LOADING, _E.CHANGED_ON_SERVER): _S.LOADING,
    (_S.READY, _E.CHANGED_ON_SERVER): _S.OBSOLETE,
    (_S.PARTIAL, _E.CHANGED_ON_SERVER): _S.OBSOLETE,
    (_S.OBSOLETE, _E.CHANGED_ON_SERVER): _S.OBSOLETE,
    (_S.NEW, _E.CHANGED_ON_SERVER): _S.NEW,
    (_S.EMPTY, _E.INVALIDATED): _S.EMPTY,
    (_S.LOADING, _E.INVALIDATED): _S.LOADING,
    (_S.READY, _E.INVALIDATED): _S.OBSOLETE,
    (_S.PARTIAL, _E.INVALIDATED): _S.OBSOLETE,
    (_S.OBSOLETE, _E.INVALIDATED): _S.OBSOLETE,
    (_S.NEW, _E.INVALIDATED): _S.NEW,
    (_S.EMPTY, _E.CREATED_LOCALLY): _S.NEW,
    (_S.NEW, _E.COMMIT_CONFIRMED): _S.READY,
    (_S.READY, _E.COMMIT_CONFIRMED): _S.READY,
    (_S.OBSOLETE, _E.COMMIT_CONFIRMED): _S.OBSOLETE,
    (_S.PARTIAL, _E.COMMIT_CONFIRMED): _S.PARTIAL,
}


def transition(status: RecordStatus, event: StatusEvent) -> RecordStatus:
    """Return the status a record moves to when ``event`` happens.

    Args:
        status: Current status.
        event: Event being applied.

    Returns:
        The new status.

    Raises:
        InvalidTransitionError: If the event is not allowed in this status.
    """
    try:
        return _TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot apply {event.value} to a record that is {status.value}"
        ) from None


def has_data(status: RecordStatus) -> bool:
    """Whether a record in this status holds readable (possibly stale) data."""
    return status in (_S.READY, _S.PARTIAL, _S.OBSOLETE, _S.NEW)
