"""SourceManager: Per-source health tracking with exponential backoff.

A price source that fails a round (fetch error, malformed payload or timeout)
is put in backoff and skipped by later rounds until the backoff expires. The
backoff doubles with each consecutive failure up to a cap; one successful
fetch clears it.

.. code-block:: python

    >>> manager = SourceManager(["stxtools", "internal"])
    >>> manager.record_failure("internal", "timeout after 5.0s")
    30.0
    >>> manager.get_active_sources()
    ['stxtools']
    >>> manager.record_success("internal", 412)
    >>> manager.get_source_status("internal").consecutive_failures
    0
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class SourceStatus:
    """Health of a single price source.

    :ivar consecutive_failures: Failures since the last success.
    :ivar backoff_until: Unix timestamp when the backoff period ends.
    :ivar total_failures: Failures since tracking began.
    :ivar total_successes: Successes since tracking began.
    :ivar last_error: Reason for the most recent failure.
    :ivar last_success_at: Unix timestamp of the most recent success.
    :ivar last_price_count: Prices returned by the most recent success.
    """

    consecutive_failures: int = 0
    backoff_until: float = 0.0
    total_failures: int = 0
    total_successes: int = 0
    last_error: str | None = None
    last_success_at: float | None = None
    last_price_count: int = 0


class SourceManager:
    """Tracks source health and decides which sources a round may call.

    Backoff after the n-th consecutive failure is
    ``base_backoff_seconds * 2 ** (n - 1)``, capped at ``max_backoff_seconds``.

    :ivar sources: Tracked source names, in priority order.
    :ivar base_backoff_seconds: Backoff after the first failure.
    :ivar max_backoff_seconds: Backoff cap.
    """

    DEFAULT_BASE_BACKOFF_SECONDS = 30
    DEFAULT_MAX_BACKOFF_SECONDS = 600  # 10 minutes

    def __init__(
        self,
        sources: list[str] | tuple[str, ...] = (),
        base_backoff_seconds: float = DEFAULT_BASE_BACKOFF_SECONDS,
        max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS,
    ) -> None:
        """Initialize the manager.

        :param sources: Source names to track.
        :param base_backoff_seconds: Backoff after the first failure.
        :param max_backoff_seconds: Backoff cap.
        :raises ValueError: If a backoff setting is negative or the cap is
            below the base.
        """
        if base_backoff_seconds < 0 or max_backoff_seconds < base_backoff_seconds:
            raise ValueError("Backoff must satisfy 0 <= base <= max")
        self.sources: list[str] = []
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._status: dict[str, SourceStatus] = {}
        for source in sources:
            self.add_source(source)

    def add_source(self, source: str) -> None:
        if source not in self._status:
            self.sources.append(source)
            self._status[source] = SourceStatus()

    def record_failure(self, source: str, reason: str = "") -> float:
        """Record a failed round for a source and start its backoff.

        :param source: Source name.
        :param reason: Failure reason kept for status reports.
        :returns: The backoff duration in seconds.
        """
        self.add_source(source)
        status = self._status[source]
        status.consecutive_failures += 1
        status.total_failures += 1
        status.last_error = reason or None

        backoff_seconds = min(
            self.base_backoff_seconds * (2 ** (status.consecutive_failures - 1)),
            self.max_backoff_seconds,
        )
        status.backoff_until = time.time() + backoff_seconds
        logger.info(
            f"[{source}] Backing off for {backoff_seconds:.0f}s "
            f"after {status.consecutive_failures} consecutive failure(s)"
        )
        return float(backoff_seconds)

    def record_success(self, source: str, price_count: int = 0) -> None:
        """Record a successful round, clearing any backoff.

        :param source: Source name.
        :param price_count: Number of prices the source returned.
        """
        self.add_source(source)
        status = self._status[source]
        if status.consecutive_failures:
            logger.info(f"[{source}] Recovered after {status.consecutive_failures} failure(s)")
        status.consecutive_failures = 0
        status.backoff_until = 0.0
        status.total_successes += 1
        status.last_success_at = time.time()
        status.last_price_count = price_count

    def is_source_active(self, source: str) -> bool:
        """Check whether a source may be called now.

        Untracked sources are active; they have never failed.
        """
        status = self._status.get(source)
        return status is None or time.time() >= status.backoff_until

    def get_active_sources(self) -> list[str]:
        now = time.time()
        return [s for s in self.sources if now >= self._status[s].backoff_until]

    def get_backoff_remaining(self, source: str) -> float:
        """Seconds left in a source's backoff, 0 when active or untracked."""
        status = self._status.get(source)
        if status is None:
            return 0.0
        return max(0.0, status.backoff_until - time.time())

    def get_source_status(self, source: str) -> SourceStatus | None:
        return self._status.get(source)

    def get_all_status(self) -> dict[str, SourceStatus]:
        return dict(self._status)

    def health_report(self) -> dict[str, dict[str, Any]]:
        """Per-source status as plain dicts, with an ``active`` flag.

        :returns: Source name -> status fields.
        """
        report = {}
        for source in self.sources:
            entry = asdict(self._status[source])
            entry["active"] = self.is_source_active(source)
            entry["backoff_remaining"] = self.get_backoff_remaining(source)
            report[source] = entry
        return report
