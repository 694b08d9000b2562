from __future__ import annotations

import httpx
import pytest
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock, patch

from depbump.utils.http import HTTPClient
from depbump.exceptions import NetworkError, RegistryError


def _response(status_code: int, *, json_data: Any = None, headers: Dict[str, str] = None) -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.headers = headers or {}
    response.text = "" if json_data is None else str(json_data)
    response.json.return_value = json_data
    return response


@pytest.mark.unit
class TestHTTPClientInit:
    """Tests for HTTPClient initialization and configuration."""

    def test_default_values(self) -> None:
        client = HTTPClient()

        assert client.timeout == 30
        assert client.max_retries == 3
        assert client.strict_ssl is True
        assert client.user_agent.startswith("depbump/")
        assert "Authorization" not in client.headers
        assert client._client is None

    def test_custom_values(self) -> None:
        client = HTTPClient(
            timeout=10,
            max_retries=5,
            user_agent="CustomAgent/1.0",
            token="s3cret",
            strict_ssl=False,
        )

        assert client.timeout == 10
        assert client.max_retries == 5
        assert client.headers == {"User-Agent": "CustomAgent/1.0", "Authorization": "Bearer s3cret"}
        assert client.strict_ssl is False


@pytest.mark.unit
class TestHTTPClientContextManager:
    """Tests for the async context manager protocol."""

    @pytest.mark.asyncio
    async def test_creates_and_closes_client(self) -> None:
        client = HTTPClient(token="s3cret")

        async with client:
            assert isinstance(client._client, httpx.AsyncClient)
            assert client._client.headers["User-Agent"] == client.user_agent
            assert client._client.headers["Authorization"] == "Bearer s3cret"

        assert client._client is None

    @pytest.mark.asyncio
    async def test_strict_ssl_reaches_httpx(self) -> None:
        with patch("depbump.utils.http.httpx.AsyncClient") as mock_client_cls:
            mock_client_cls.return_value.aclose = AsyncMock()

            async with HTTPClient(strict_ssl=False):
                pass

        assert mock_client_cls.call_args.kwargs["verify"] is False

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        client = HTTPClient()

        await client.close()
        await client.close()

        assert client._client is None


@pytest.mark.unit
class TestRequestWithRetry:
    """Tests for retry, backoff and status handling."""

    @pytest.mark.asyncio
    async def test_successful_request(self) -> None:
        with patch.object(httpx.AsyncClient, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200)

            async with HTTPClient(max_retries=1) as client:
                response = await client.get("https://registry.npmjs.org/react")

        assert response.status_code == 200
        assert mock_request.call_count == 1

    @pytest.mark.asyncio
    async def test_strips_quotes_from_url(self) -> None:
        with patch.object(httpx.AsyncClient, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200)

            async with HTTPClient(max_retries=0) as client:
                await client.get("'https://registry.npmjs.org/react'")

        mock_request.assert_awaited_once_with("GET", "https://registry.npmjs.org/react")

    @pytest.mark.asyncio
    async def test_404_raises_registry_error(self) -> None:
        with patch.object(httpx.AsyncClient, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(404)

            async with HTTPClient() as client:
                with pytest.raises(RegistryError) as exc_info:
                    await client.get("https://registry.npmjs.org/ghost")

        assert exc_info.value.status_code == 404
        assert mock_request.call_count == 1

    @pytest.mark.asyncio
    async def test_429_honours_retry_after(self) -> None:
        """Test a rate-limited response is retried after Retry-After."""
        with patch.object(
            httpx.AsyncClient, "request", new_callable=AsyncMock
        ) as mock_request, patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            mock_request.side_effect = [
                _response(429, headers={"Retry-After": "2"}),
                _response(200),
            ]

            async with HTTPClient(max_retries=1) as client:
                response = await client.get("https://registry.npmjs.org/react")

        assert response.status_code == 200
        mock_sleep.assert_any_await(2)

    @pytest.mark.asyncio
    async def test_429_gives_up(self) -> None:
        with patch.object(
            httpx.AsyncClient, "request", new_callable=AsyncMock
        ) as mock_request, patch("asyncio.sleep", new_callable=AsyncMock):
            mock_request.return_value = _response(429, headers={"Retry-After": "0"})

            async with HTTPClient(max_retries=5) as client:
                client._max_429_retries = 2
                with pytest.raises(NetworkError) as exc_info:
                    await client.get("https://registry.npmjs.org/react")

        assert exc_info.value.status_code == 429
        assert mock_request.call_count == 3

    @pytest.mark.asyncio
    async def test_retries_network_errors(self) -> None:
        with patch.object(
            httpx.AsyncClient, "request", new_callable=AsyncMock
        ) as mock_request, patch("asyncio.sleep", new_callable=AsyncMock):
            mock_request.side_effect = [
                httpx.ConnectError("refused"),
                httpx.ReadTimeout("slow"),
                _response(200),
            ]

            async with HTTPClient(max_retries=2) as client:
                response = await client.get("https://registry.npmjs.org/react")

        assert response.status_code == 200
        assert mock_request.call_count == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_network_error(self) -> None:
        with patch.object(
            httpx.AsyncClient, "request", new_callable=AsyncMock
        ) as mock_request, patch("asyncio.sleep", new_callable=AsyncMock):
            mock_request.side_effect = httpx.ConnectError("refused")

            async with HTTPClient(max_retries=1) as client:
                with pytest.raises(NetworkError, match="after 2 attempts"):
                    await client.get("https://registry.npmjs.org/react")

        assert mock_request.call_count == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self) -> None:
        response = _response(400)
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "bad request", request=MagicMock(), response=response
        )

        with patch.object(httpx.AsyncClient, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = response

            async with HTTPClient(max_retries=3) as client:
                with pytest.raises(NetworkError) as exc_info:
                    await client.get("https://registry.npmjs.org/private")

        assert exc_info.value.status_code == 400
        assert mock_request.call_count == 1

    @pytest.mark.asyncio
    async def test_unauthorized_suggests_token(self) -> None:
        """Test a private package without credentials points at NPM_TOKEN."""
        with patch.object(httpx.AsyncClient, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(401)

            async with HTTPClient() as client:
                with pytest.raises(NetworkError, match="set NPM_TOKEN") as exc_info:
                    await client.get("https://registry.npmjs.org/@acme%2Fprivate")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_retry_after_is_capped(self) -> None:
        with patch.object(
            httpx.AsyncClient, "request", new_callable=AsyncMock
        ) as mock_request, patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            mock_request.side_effect = [
                _response(429, headers={"Retry-After": "3600"}),
                _response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}),
                _response(200),
            ]

            async with HTTPClient(max_retries=2) as client:
                await client.get("https://registry.npmjs.org/react")

        assert [c.args[0] for c in mock_sleep.await_args_list] == [60, 1.0]


@pytest.mark.unit
class TestGetJson:
    """Tests for get_json."""

    @pytest.mark.asyncio
    async def test_returns_object(self) -> None:
        with patch.object(httpx.AsyncClient, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, json_data={"name": "react"})

            async with HTTPClient() as client:
                data = await client.get_json("https://registry.npmjs.org/react")

        assert data == {"name": "react"}

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        response = _response(200)
        response.json.side_effect = ValueError("not json")

        with patch.object(httpx.AsyncClient, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = response

            async with HTTPClient() as client:
                with pytest.raises(NetworkError, match="Invalid JSON"):
                    await client.get_json("https://registry.npmjs.org/react")

    @pytest.mark.asyncio
    async def test_non_object_json(self) -> None:
        with patch.object(httpx.AsyncClient, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, json_data=["react"])

            async with HTTPClient() as client:
                with pytest.raises(NetworkError, match="Expected JSON object"):
                    await client.get_json("https://registry.npmjs.org/react")
