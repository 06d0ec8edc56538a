"""Decoding of JMAP method responses into typed envelopes.

Responses to ``getMessages`` are decoded into an explicit discriminated union.
The request that produced the response decides its kind: fetches of a whole
property tier yield :class:`RecordsResponse`, refreshes of mutable properties
yield :class:`PartialResponse`. Nothing is inferred from which fields a record
happens to carry.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from mail_sync.exceptions import MethodError, UnexpectedResponseError
from mail_sync.jmap.client import MethodResponse

CANNOT_CALCULATE_CHANGES = "cannotCalculateChanges"


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RecordsResponse(_Envelope):
    """Full records for one property tier."""

    kind: Literal["records"] = "records"
    state: str | None = None
    records: list[dict[str, Any]] = Field(default_factory=list, alias="list")
    not_found: list[str] = Field(default_factory=list, alias="notFound")


class PartialResponse(_Envelope):
    """Some properties of existing records, keyed by id."""

    kind: Literal["partial"] = "partial"
    state: str | None = None
    records: list[dict[str, Any]] = Field(default_factory=list, alias="list")
    not_found: list[str] = Field(default_factory=list, alias="notFound")

    @property
    def updates(self) -> dict[str, dict[str, Any]]:
        return {
            record["id"]: {k: v for k, v in record.items() if k != "id"}
            for record in self.records
        }


MessagesResponse = Annotated[Union[RecordsResponse, PartialResponse], Field(discriminator="kind")]

_messages_adapter: TypeAdapter[RecordsResponse | PartialResponse] = TypeAdapter(MessagesResponse)


class MessageUpdates(_Envelope):
    """Response to ``getMessageUpdates``."""

    old_state: str | None = Field(default=None, alias="oldState")
    new_state: str = Field(alias="newState")
    has_more_updates: bool = Field(default=False, alias="hasMoreUpdates")
    changed: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class MessagesSet(_Envelope):
    """Response to ``setMessages``."""

    old_state: str | None = Field(default=None, alias="oldState")
    new_state: str | None = Field(default=None, alias="newState")
    created: dict[str, dict[str, Any]] = Field(default_factory=dict)
    updated: list[str] = Field(default_factory=list)
    destroyed: list[str] = Field(default_factory=list)
    not_created: dict[str, Any] = Field(default_factory=dict, alias="notCreated")
    not_updated: dict[str, Any] = Field(default_factory=dict, alias="notUpdated")
    not_destroyed: dict[str, Any] = Field(default_factory=dict, alias="notDestroyed")


E = TypeVar("E", bound=BaseModel)


def raise_for_error(responses: list[MethodResponse]) -> None:
    """Raise MethodError if the server answered a call with ``error``."""
    for name, arguments in responses:
        if name == "error":
            raise MethodError(str(arguments.get("type", "unknown")), arguments)


def find_response(responses: list[MethodResponse], name: str) -> dict[str, Any] | None:
    for response_name, arguments in responses:
        if response_name == name:
            return arguments
    return None


def decode(model: type[E], arguments: dict[str, Any]) -> E:
    """Validate response arguments against an envelope model.

    Raises:
        UnexpectedResponseError: If the arguments do not fit the model.
    """
    try:
        return model.model_validate(arguments)
    except ValidationError as exc:
        raise UnexpectedResponseError(f"Malformed {model.__name__}: {exc}") from exc


def decode_messages(
    arguments: dict[str, Any],
    kind: Literal["records", "partial"],
) -> RecordsResponse | PartialResponse:
    """Decode a ``messages`` response as the kind the request asked for.

    Raises:
        UnexpectedResponseError: If the arguments are malformed or a record
            has no id.
    """
    try:
        envelope = _messages_adapter.validate_python({**arguments, "kind": kind})
    except ValidationError as exc:
        raise UnexpectedResponseError(f"Malformed messages response: {exc}") from exc

    for record in envelope.records:
        if not isinstance(record.get("id"), str):
            raise UnexpectedResponseError(f"Message record without id: {record!r}")
    return envelope
