"""Custom exceptions for Mail Sync."""

from typing import Any


class MailSyncError(Exception):
    """Base exception for all Mail Sync errors."""


class ConfigurationError(MailSyncError):
    """Exception raised for configuration related errors."""


class TransportError(MailSyncError):
    """Exception raised when a request could not be delivered or was rejected."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MethodError(MailSyncError):
    """Exception raised for an `error` method response from the server."""

    def __init__(self, type: str, arguments: dict[str, Any] | None = None) -> None:
        super().__init__(f"Server returned error '{type}'")
        self.type = type
        self.arguments = arguments or {}


class UnexpectedResponseError(MailSyncError):
    """Exception raised when a response does not have the expected shape."""


class InvalidTransitionError(MailSyncError):
    """Exception raised for a record status change the state machine forbids."""


class UnknownRecordError(MailSyncError):
    """Exception raised when a local change targets a record the cache lacks."""
