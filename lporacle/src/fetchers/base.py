"""Base fetcher interface and shared HTTP client management.

Every source fetcher inherits from BaseFetcher and implements fetch_prices(),
which returns a partial token id -> USD price map. Sources are independently
fallible: a fetcher may raise FetcherError, and the caller turns that into an
empty contribution rather than aborting aggregation.

A shared httpx.AsyncClient is used across all fetchers to avoid connection
overhead.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"

        async def fetch_prices(self) -> dict[str, float]:
            response = await self._get("https://api.example.com/prices")
            return {row["id"]: float(row["usd"]) for row in response.json()}
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

logger = logging.getLogger(__name__)


class FetcherError(Exception):
    """Base exception for fetcher errors."""

    pass


class FetcherConfigError(FetcherError):
    """Raised when fetcher configuration is invalid (e.g., missing URL)."""

    pass


class FetcherHTTPError(FetcherError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class BaseFetcher(ABC):
    """Abstract base class for source price fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "stxtools")
        - fetch_prices(): Async method returning a token id -> USD price map

    :cvar name: Unique identifier for this fetcher.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Shared client for every source; each round makes one request per source."""
        if cls._shared_client is None or cls._shared_client.is_closed:
            cls._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(cls.DEFAULT_TIMEOUT),
                limits=httpx.Limits(max_connections=8),
                follow_redirects=True,
            )
        return cls._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        if cls._shared_client is not None and not cls._shared_client.is_closed:
            await cls._shared_client.aclose()
        cls._shared_client = None

    @abstractmethod
    async def fetch_prices(self) -> dict[str, float]:
        """Fetch the current USD prices this source knows about.

        :returns: Dict mapping token id to USD price.
        :raises FetcherError: If the source cannot be reached or parsed.
        """

    @staticmethod
    def _valid_price(value: Any) -> float | None:
        """Coerce an upstream price value, rejecting non-finite or negative ones."""
        if value is None:
            return None
        try:
            price = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(price) or price < 0:
            return None
        return price

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """GET a price endpoint through the shared client.

        :raises FetcherHTTPError: On a non-2xx response.
        :raises FetcherError: On transport errors and timeouts.
        """
        try:
            response = await self.get_shared_client().get(
                url, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e
        if not response.is_success:
            logger.debug(f"[{self.name}] GET {url} -> {response.status_code}")
            raise FetcherHTTPError(response.status_code, response.text[:200])
        return response


FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Class decorator adding a fetcher to the registry under its ``name``.

    :raises ValueError: If the fetcher has no name.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(name: str, api_key: str | None = None, **options: Any) -> BaseFetcher:
    """Build a registered fetcher by source name.

    :param name: Source name (e.g., "stxtools", "internal").
    :param api_key: Optional API key.
    :param options: Extra keyword arguments for the fetcher constructor.
    :raises ValueError: If the source name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](api_key=api_key, **options)


def get_available_fetchers() -> list[str]:
    return sorted(FETCHER_REGISTRY)
