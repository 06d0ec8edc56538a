"""Unit tests for the JMAP HTTP client."""

from __future__ import annotations

import json

import httpx
import pytest

from mail_sync.config import Settings
from mail_sync.exceptions import ConfigurationError, TransportError, UnexpectedResponseError
from mail_sync.jmap import JmapClient


def _client(settings: Settings, handler) -> JmapClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JmapClient(settings, http_client=http_client)


class TestJmapClient:
    """Test suite for JmapClient class."""

    def test_jmap_client_initialization(self, mock_settings) -> None:
        """Test that the client is properly initialized."""
        client = JmapClient(mock_settings)

        assert client.settings is mock_settings
        assert client._client is None

    @pytest.mark.asyncio
    async def test_call_posts_method_call_and_returns_tagged_responses(self, mock_settings) -> None:
        """Test that call posts one tagged method call and keeps only its responses."""
        seen: list[list] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append(body)
            tag = body[0][2]
            return httpx.Response(
                200,
                json=[
                    ["messageUpdates", {"oldState": "S0", "newState": "S1"}, tag],
                    ["messages", {"list": []}, tag],
                    ["messages", {"list": []}, "#other"],
                ],
            )

        client = _client(mock_settings, handler)
        responses = await client.call("getMessageUpdates", {"sinceState": "S0"})
        await client.aclose()

        assert seen[0][0][:2] == ["getMessageUpdates", {"sinceState": "S0"}]
        assert responses == [
            ("messageUpdates", {"oldState": "S0", "newState": "S1"}),
            ("messages", {"list": []}),
        ]

    @pytest.mark.asyncio
    async def test_http_error_raises_transport_error(self, mock_settings) -> None:
        """Test that an HTTP error status raises TransportError with the status code."""
        client = _client(mock_settings, lambda request: httpx.Response(503))

        with pytest.raises(TransportError) as exc_info:
            await client.call("getMessages", {"ids": ["m1"]})

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connection_error_raises_transport_error(self, mock_settings) -> None:
        """Test that a connection failure raises TransportError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(mock_settings, handler)

        with pytest.raises(TransportError) as exc_info:
            await client.call("getMessages", {"ids": ["m1"]})

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_malformed_body_raises_unexpected_response(self, mock_settings) -> None:
        """Test that a body that is not a response list is rejected."""
        client = _client(mock_settings, lambda request: httpx.Response(200, json={"not": "a list"}))

        with pytest.raises(UnexpectedResponseError):
            await client.call("getMessages", {"ids": ["m1"]})

    @pytest.mark.asyncio
    async def test_missing_response_for_tag_raises(self, mock_settings) -> None:
        """Test that a body with no response for the call's tag is rejected."""
        client = _client(
            mock_settings,
            lambda request: httpx.Response(200, json=[["messages", {"list": []}, "#unrelated"]]),
        )

        with pytest.raises(UnexpectedResponseError):
            await client.call("getMessages", {"ids": ["m1"]})

    @pytest.mark.asyncio
    async def test_missing_api_url_raises_configuration_error(self) -> None:
        """Test that calling without an API URL raises ConfigurationError."""
        client = JmapClient(Settings(api_url=None, _env_file=None))

        with pytest.raises(ConfigurationError):
            await client.call("getMessages", {"ids": ["m1"]})

    @pytest.mark.asyncio
    async def test_default_http_client_sends_bearer_token(self, mock_settings) -> None:
        """Test that the default HTTP client carries the configured bearer token."""
        client = JmapClient(mock_settings)

        http_client = await client._get_client()
        try:
            assert http_client.headers["Authorization"] == "Bearer test-token"
        finally:
            await client.aclose()
