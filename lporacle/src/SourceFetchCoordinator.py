"""SourceFetchCoordinator: Concurrent multi-source price fetching.

Every source is fetched concurrently under its own timeout. The coordinator
waits for all outcomes (success, failure, timeout) before returning, so a
hung source delays the batch by at most its own timeout. A failed or
timed-out source contributes an empty map; it never aborts the batch or
cancels sibling fetches. With a SourceManager attached, outcomes are recorded
per source and sources still in backoff are skipped without being called.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import SourceUnavailable

if TYPE_CHECKING:
    from .fetchers import BaseFetcher
    from .SourceManager import SourceManager

logger = logging.getLogger(__name__)


@dataclass
class SourceFetchOutcome:
    """Per-source results of one fetch round.

    :ivar maps: Price maps in source order; failed sources map to {}.
    :ivar succeeded: Names of sources that returned data.
    :ivar failed: Source name -> failure reason, including skipped sources.
    :ivar skipped: Sources not called because they are in backoff.
    """

    maps: list[dict[str, float]] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


class SourceFetchCoordinator:
    """Fetches price maps from multiple sources concurrently.

    :ivar fetchers: Ordered mapping of source name to fetcher. The order
        decides which source is "A" and which is "B" for merge strategies.
    :ivar fetch_timeout: Per-source timeout in seconds.
    :ivar source_manager: Optional health tracker shared across rounds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        fetch_timeout: float = 5.0,
        source_manager: SourceManager | None = None,
    ) -> None:
        """Initialize the coordinator.

        :param fetchers: Ordered dict mapping source names to fetcher instances.
        :param fetch_timeout: Timeout for each source fetch (default: 5.0).
        :param source_manager: Health tracker; sources in backoff are skipped.
        """
        self.fetchers = fetchers
        self.fetch_timeout = fetch_timeout
        self.source_manager = source_manager

    async def fetch_all(self) -> SourceFetchOutcome:
        """Fetch every source concurrently.

        :returns: SourceFetchOutcome with one map per source, in source order.
        """
        outcome = SourceFetchOutcome()
        if not self.fetchers:
            return outcome

        names = list(self.fetchers)
        manager = self.source_manager
        active = [n for n in names if manager is None or manager.is_source_active(n)]
        results = await asyncio.gather(
            *(self._fetch_source(name) for name in active),
            return_exceptions=True,
        )
        by_name = dict(zip(active, results, strict=True))

        for name in names:
            if name not in by_name:
                remaining = manager.get_backoff_remaining(name)
                logger.debug(f"[{name}] Skipped, in backoff for {remaining:.1f}s")
                outcome.maps.append({})
                outcome.failed[name] = f"in backoff for {remaining:.1f}s"
                outcome.skipped.append(name)
                continue

            result = by_name[name]
            if isinstance(result, BaseException):
                logger.warning(f"[{name}] {result}")
                outcome.maps.append({})
                outcome.failed[name] = str(result)
                if manager is not None:
                    manager.record_failure(name, str(result))
            else:
                outcome.maps.append(result)
                outcome.succeeded.append(name)
                if manager is not None:
                    manager.record_success(name, len(result))

        if not outcome.succeeded:
            logger.warning("All price sources failed, continuing with empty price map")
        return outcome

    async def _fetch_source(self, name: str) -> dict[str, float]:
        """Fetch a single source with timeout.

        :param name: Source name.
        :returns: Token id -> price map.
        :raises SourceUnavailable: On timeout or fetcher error.
        """
        fetcher = self.fetchers[name]
        try:
            prices = await asyncio.wait_for(
                fetcher.fetch_prices(),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SourceUnavailable(name, f"timeout after {self.fetch_timeout}s") from e
        except Exception as e:
            raise SourceUnavailable(name, str(e)) from e

        logger.debug(f"[{name}] Fetched {len(prices)} prices")
        return prices
