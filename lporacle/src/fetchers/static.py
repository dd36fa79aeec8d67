"""Static fetcher serving a fixed price map.

Used for offline runs (prices loaded from the universe file) and tests.
"""

from .base import BaseFetcher, register_fetcher


@register_fetcher
class StaticFetcher(BaseFetcher):
    """Fetcher that returns a copy of a fixed token id -> price map."""

    name = "static"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        prices: dict[str, float] | None = None,
    ):
        super().__init__(api_key=api_key, timeout=timeout)
        self.prices = dict(prices or {})

    async def fetch_prices(self) -> dict[str, float]:
        """Return the configured prices."""
        return dict(self.prices)
