"""JMAP API client implementation.

This module provides the transport the sync controller talks to. A request is
a JSON array of ``[method, arguments, tag]`` method calls POSTed to the API
URL; the response is an array of ``[name, arguments, tag]`` method responses.
One method call can yield several responses (for example ``messageUpdates``
followed by ``messages``).
"""

from __future__ import annotations

import itertools
from typing import Any, Protocol

import httpx
import structlog

from mail_sync.config import Settings
from mail_sync.exceptions import ConfigurationError, TransportError, UnexpectedResponseError

logger = structlog.get_logger()

MethodResponse = tuple[str, dict[str, Any]]


class Transport(Protocol):
    """Anything that can deliver a method call and return its responses in order."""

    async def call(self, method: str, arguments: dict[str, Any]) -> list[MethodResponse]: ...


class JmapClient:
    """HTTP transport for JMAP method calls.

    The client does not retry; failures are raised as TransportError and the
    caller decides what to do.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the JMAP client.

        Args:
            settings: Application settings. If None, uses default settings.
            http_client: Preconfigured httpx client. If None, one is created on
                first use from settings.
        """
        from mail_sync.config import get_settings

        self.settings = settings or get_settings()
        self._client = http_client
        self._tags = itertools.count()
        logger.info("jmap_client_initialized", api_url=self.settings.api_url)

    async def call(self, method: str, arguments: dict[str, Any]) -> list[MethodResponse]:
        """Send one method call and return the responses addressed to it.

        Args:
            method: Method name, e.g. ``getMessageUpdates``.
            arguments: Method arguments.

        Returns:
            ``(name, arguments)`` pairs in the order the server sent them.

        Raises:
            ConfigurationError: If no API URL is configured.
            TransportError: If the request fails or the server rejects it.
            UnexpectedResponseError: If the body is not a method response list.
        """
        tag = f"#{next(self._tags)}"
        client = await self._get_client()

        logger.debug("jmap_call_started", method=method, tag=tag)

        try:
            response = await client.post(self.settings.api_url, json=[[method, arguments, tag]])
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.exception(
                "jmap_call_rejected",
                method=method,
                status_code=exc.response.status_code,
            )
            raise TransportError(str(exc), status_code=exc.response.status_code) from exc
        except httpx.RequestError as exc:
            logger.exception("jmap_call_failed", method=method, error=str(exc))
            raise TransportError(f"Connection error to {self.settings.api_url}: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise UnexpectedResponseError("Response body is not JSON") from exc

        return _responses_for_tag(body, tag)

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _get_client(self) -> httpx.AsyncClient:
        if not self.settings.api_url:
            raise ConfigurationError(
                "No JMAP API URL configured. Set MAIL_SYNC_API_URL."
            )

        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.settings.api_token:
                headers["Authorization"] = f"Bearer {self.settings.api_token}"
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=self.settings.request_timeout,
                follow_redirects=True,
            )
        return self._client


def _responses_for_tag(body: Any, tag: str) -> list[MethodResponse]:
    if not isinstance(body, list):
        raise UnexpectedResponseError("Response body is not a list of method responses")

    responses: list[MethodResponse] = []
    for item in body:
        if (
            not isinstance(item, list)
            or len(item) != 3
            or not isinstance(item[0], str)
            or not isinstance(item[1], dict)
        ):
            raise UnexpectedResponseError(f"Malformed method response: {item!r}")
        name, arguments, response_tag = item
        if response_tag == tag:
            responses.append((name, arguments))

    if not responses:
        raise UnexpectedResponseError(f"No method response for call {tag}")
    return responses
