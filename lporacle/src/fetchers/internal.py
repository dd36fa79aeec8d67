"""Internal price API fetcher.

Endpoint: {base_url}/api/v1/prices?limit={limit}
Response: {"status": "success", "data": [{"tokenId", "symbol", "usdPrice", "confidence"}]}
Entries at or below MIN_CONFIDENCE are dropped.
"""

import logging
import os

from .base import BaseFetcher, FetcherConfigError, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class InternalApiFetcher(BaseFetcher):
    """Fetcher for the in-house price API.

    The base URL comes from the constructor or the INTERNAL_PRICES_URL
    environment variable.
    """

    name = "internal"
    MIN_CONFIDENCE = 0.1
    DEFAULT_LIMIT = 100

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        base_url: str | None = None,
        limit: int = DEFAULT_LIMIT,
    ):
        super().__init__(api_key=api_key, timeout=timeout)
        self.base_url = (base_url or os.environ.get("INTERNAL_PRICES_URL") or "").rstrip("/")
        self.limit = limit

    async def fetch_prices(self) -> dict[str, float]:
        """Fetch prices from the internal API.

        :returns: Dict mapping token id to USD price.
        :raises FetcherConfigError: If no base URL is configured.
        :raises FetcherError: On HTTP failure, error status or malformed payload.
        """
        if not self.base_url:
            raise FetcherConfigError("[internal] No base URL configured")

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.has_api_key else None
        response = await self._get(
            f"{self.base_url}/api/v1/prices",
            params={"limit": self.limit},
            headers=headers,
        )
        try:
            payload = response.json()
            if payload.get("status") != "success":
                raise FetcherError(f"[internal] API returned status {payload.get('status')!r}")
            rows = payload["data"]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise FetcherError(f"[internal] Malformed response: {e}") from e

        prices: dict[str, float] = {}
        for row in rows:
            token_id = row.get("tokenId")
            price = self._valid_price(row.get("usdPrice"))
            confidence = self._valid_price(row.get("confidence")) or 0.0
            if not token_id or price is None or confidence <= self.MIN_CONFIDENCE:
                continue
            prices[token_id] = price

        logger.debug(f"[internal] Fetched {len(prices)} prices")
        return prices
