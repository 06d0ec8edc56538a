"""Unit tests for JMAP response decoding."""

import pytest

from mail_sync.exceptions import MethodError, UnexpectedResponseError
from mail_sync.jmap.parsing import (
    MessagesSet,
    MessageUpdates,
    PartialResponse,
    RecordsResponse,
    decode,
    decode_messages,
    find_response,
    raise_for_error,
)


def test_request_kind_decides_envelope_not_record_shape() -> None:
    """Test that a record without a date is still a full record when full records were asked for."""
    arguments = {"state": "S1", "list": [{"id": "m1", "subject": "No date"}], "notFound": []}

    records = decode_messages(arguments, "records")
    partial = decode_messages({"list": [{"id": "m1", "isUnread": False}]}, "partial")

    assert isinstance(records, RecordsResponse)
    assert records.state == "S1"
    assert records.records[0]["subject"] == "No date"
    assert isinstance(partial, PartialResponse)
    assert partial.updates == {"m1": {"isUnread": False}}


def test_record_without_id_is_rejected() -> None:
    """Test that a message record without an id is rejected."""
    with pytest.raises(UnexpectedResponseError):
        decode_messages({"list": [{"subject": "?"}]}, "records")


def test_message_updates_requires_new_state() -> None:
    """Test that an updates response without newState is rejected."""
    with pytest.raises(UnexpectedResponseError):
        decode(MessageUpdates, {"oldState": "S0", "changed": []})


def test_message_updates_decoding() -> None:
    """Test decoding a complete messageUpdates response."""
    updates = decode(
        MessageUpdates,
        {"oldState": "S0", "newState": "S1", "hasMoreUpdates": True, "changed": ["m1"], "removed": ["m2"]},
    )

    assert updates.old_state == "S0"
    assert updates.new_state == "S1"
    assert updates.has_more_updates is True
    assert updates.changed == ["m1"]
    assert updates.removed == ["m2"]


def test_messages_set_defaults() -> None:
    """Test that optional messagesSet fields default to empty."""
    result = decode(MessagesSet, {"newState": "S2"})

    assert result.created == {}
    assert result.not_updated == {}
    assert result.old_state is None


def test_error_response_raises_method_error() -> None:
    """Test that an error response raises MethodError with its arguments."""
    responses = [("error", {"type": "cannotCalculateChanges", "newState": "S9"})]

    with pytest.raises(MethodError) as exc_info:
        raise_for_error(responses)

    assert exc_info.value.type == "cannotCalculateChanges"
    assert exc_info.value.arguments["newState"] == "S9"


def test_find_response() -> None:
    """Test looking up a response by name."""
    responses = [("messageUpdates", {"newState": "S1"}), ("messages", {"list": []})]

    assert find_response(responses, "messages") == {"list": []}
    assert find_response(responses, "messagesSet") is None
