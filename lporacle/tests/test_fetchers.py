"""Unit tests for source price fetchers."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from lporacle.src.fetchers import (
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    InternalApiFetcher,
    StaticFetcher,
    StxToolsFetcher,
    get_available_fetchers,
    get_fetcher,
)


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


@pytest.fixture
def mock_transport():
    """Route the shared client through an httpx.MockTransport."""

    def install(handler):
        BaseFetcher._shared_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    yield install
    BaseFetcher._shared_client = None


class TestRegistry:
    """Test the fetcher registry."""

    def test_available_fetchers(self) -> None:
        """All built-in fetchers should be registered."""
        assert {"stxtools", "internal", "static"} <= set(get_available_fetchers())

    def test_get_fetcher(self) -> None:
        """get_fetcher should build an instance with options."""
        fetcher = get_fetcher("static", prices={"a": 1.0})
        assert isinstance(fetcher, StaticFetcher)
        assert fetcher.prices == {"a": 1.0}

    def test_unknown_fetcher(self) -> None:
        """Unknown names should raise ValueError."""
        with pytest.raises(ValueError, match="Unknown fetcher 'nope'"):
            get_fetcher("nope")


class TestStxToolsFetcher:
    """Test the STXTools token list fetcher."""

    def test_parses_prices(self) -> None:
        """contract_id maps to metrics.price_usd; unpriced rows are skipped."""
        payload = {
            "data": [
                {"contract_id": "SP1.token-a", "metrics": {"price_usd": 1.25}},
                {"contract_id": "SP1.token-b", "metrics": {"price_usd": None}},
                {"contract_id": "SP1.token-c", "metrics": {}},
                {"contract_id": "SP1.token-d", "metrics": {"price_usd": "0.5"}},
            ]
        }
        fetcher = StxToolsFetcher()
        with patch.object(fetcher, "_get", AsyncMock(return_value=json_response(payload))):
            prices = asyncio.run(fetcher.fetch_prices())
        assert prices == {"SP1.token-a": 1.25, "SP1.token-d": 0.5}

    def test_native_token_keyed_twice(self) -> None:
        """The native token is reported under both alias keys."""
        payload = {"data": [{"contract_id": ".stx", "metrics": {"price_usd": 2.1}}]}
        fetcher = StxToolsFetcher()
        with patch.object(fetcher, "_get", AsyncMock(return_value=json_response(payload))):
            prices = asyncio.run(fetcher.fetch_prices())
        assert prices == {".stx": 2.1, "stx": 2.1}

    def test_request_params(self) -> None:
        """The whole token list is requested in one page."""
        fetcher = StxToolsFetcher()
        mock_get = AsyncMock(return_value=json_response({"data": []}))
        with patch.object(fetcher, "_get", mock_get):
            asyncio.run(fetcher.fetch_prices())
        mock_get.assert_awaited_once_with(
            "https://api.stxtools.io/tokens", params={"page": 0, "size": 10000}
        )

    def test_malformed_payload(self) -> None:
        """A payload without data raises FetcherError."""
        fetcher = StxToolsFetcher()
        with patch.object(fetcher, "_get", AsyncMock(return_value=json_response({"oops": 1}))):
            with pytest.raises(FetcherError, match="Malformed response"):
                asyncio.run(fetcher.fetch_prices())

    def test_http_error(self, mock_transport) -> None:
        """Non-2xx responses raise FetcherHTTPError."""
        mock_transport(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(FetcherHTTPError) as exc_info:
            asyncio.run(StxToolsFetcher().fetch_prices())
        assert exc_info.value.status_code == 503

    def test_network_error(self, mock_transport) -> None:
        """Transport failures raise FetcherError."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        mock_transport(handler)
        with pytest.raises(FetcherError, match="Request failed"):
            asyncio.run(StxToolsFetcher().fetch_prices())


class TestInternalApiFetcher:
    """Test the internal price API fetcher."""

    def test_requires_base_url(self, monkeypatch) -> None:
        """No configured URL raises FetcherConfigError."""
        monkeypatch.delenv("INTERNAL_PRICES_URL", raising=False)
        with pytest.raises(FetcherConfigError, match="No base URL"):
            asyncio.run(InternalApiFetcher().fetch_prices())

    def test_base_url_from_env(self, monkeypatch) -> None:
        """The base URL falls back to INTERNAL_PRICES_URL."""
        monkeypatch.setenv("INTERNAL_PRICES_URL", "https://prices.example.com/")
        assert InternalApiFetcher().base_url == "https://prices.example.com"

    def test_low_confidence_dropped(self) -> None:
        """Entries at or below the confidence floor are dropped."""
        payload = {
            "status": "success",
            "data": [
                {"tokenId": "a", "usdPrice": 1.0, "confidence": 0.9},
                {"tokenId": "b", "usdPrice": 2.0, "confidence": 0.1},
                {"tokenId": "c", "usdPrice": 3.0},
                {"tokenId": "d", "usdPrice": -3.0, "confidence": 1.0},
            ],
        }
        fetcher = InternalApiFetcher(base_url="https://prices.example.com")
        with patch.object(fetcher, "_get", AsyncMock(return_value=json_response(payload))):
            prices = asyncio.run(fetcher.fetch_prices())
        assert prices == {"a": 1.0}

    def test_error_status(self) -> None:
        """A non-success status raises FetcherError."""
        fetcher = InternalApiFetcher(base_url="https://prices.example.com")
        response = json_response({"status": "error", "data": []})
        with patch.object(fetcher, "_get", AsyncMock(return_value=response)):
            with pytest.raises(FetcherError, match="status 'error'"):
                asyncio.run(fetcher.fetch_prices())

    def test_bearer_header(self, mock_transport) -> None:
        """An API key is sent as a bearer token."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            seen["limit"] = request.url.params.get("limit")
            return httpx.Response(200, json={"status": "success", "data": []})

        mock_transport(handler)
        fetcher = InternalApiFetcher(api_key="secret", base_url="https://prices.example.com")
        assert asyncio.run(fetcher.fetch_prices()) == {}
        assert seen == {"auth": "Bearer secret", "limit": "100"}


class TestStaticFetcher:
    """Test the static fetcher."""

    def test_returns_copy(self) -> None:
        """Callers cannot mutate the configured prices."""
        fetcher = StaticFetcher(prices={"a": 1.0})
        prices = asyncio.run(fetcher.fetch_prices())
        prices["a"] = 5.0
        assert fetcher.prices == {"a": 1.0}
