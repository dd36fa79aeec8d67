"""STXTools token list fetcher.

Endpoint: https://api.stxtools.io/tokens?page=0&size=10000
Rate Limit: unpublished, one call per cycle is enough
Native token: listed under contract id ".stx"; also keyed under the bare "stx"
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class StxToolsFetcher(BaseFetcher):
    """Fetcher for the STXTools token list.

    Every listed token carries ``metrics.price_usd``; tokens without a price
    are skipped. The native token is reported under both its qualified key
    and its bare key, since consumers look it up either way.
    """

    name = "stxtools"
    BASE_URL = "https://api.stxtools.io"
    PAGE_SIZE = 10000

    NATIVE_QUALIFIED_KEY = ".stx"
    NATIVE_BARE_KEY = "stx"

    async def fetch_prices(self) -> dict[str, float]:
        """Fetch all token prices from STXTools.

        :returns: Dict mapping contract id to USD price.
        :raises FetcherError: On HTTP failure or malformed payload.
        """
        response = await self._get(
            f"{self.BASE_URL}/tokens",
            params={"page": 0, "size": self.PAGE_SIZE},
        )
        try:
            rows = response.json()["data"]
        except (KeyError, ValueError, TypeError) as e:
            raise FetcherError(f"[stxtools] Malformed response: {e}") from e

        prices: dict[str, float] = {}
        for row in rows:
            contract_id = row.get("contract_id")
            metrics = row.get("metrics") or {}
            price = self._valid_price(metrics.get("price_usd"))
            if not contract_id or price is None:
                continue
            prices[contract_id] = price

            if contract_id == self.NATIVE_QUALIFIED_KEY:
                prices[self.NATIVE_BARE_KEY] = price

        logger.debug(f"[stxtools] Fetched {len(prices)} prices")
        return prices
