"""Unit tests for SourceFetchCoordinator."""

import asyncio
import time

from lporacle.src.fetchers import BaseFetcher, FetcherError, StaticFetcher
from lporacle.src.SourceFetchCoordinator import SourceFetchCoordinator
from lporacle.src.SourceManager import SourceManager


class HangingFetcher(BaseFetcher):
    name = "hanging"

    async def fetch_prices(self) -> dict[str, float]:
        await asyncio.sleep(10)
        return {"late": 1.0}


class BrokenFetcher(BaseFetcher):
    name = "broken"

    async def fetch_prices(self) -> dict[str, float]:
        raise FetcherError("upstream exploded")


class TestFetchAll:
    """Test concurrent fetching with per-source timeouts."""

    def test_all_succeed(self) -> None:
        """Every source contributes its map, in source order."""
        coordinator = SourceFetchCoordinator(
            {
                "first": StaticFetcher(prices={"a": 1.0}),
                "second": StaticFetcher(prices={"b": 2.0}),
            }
        )
        outcome = asyncio.run(coordinator.fetch_all())
        assert outcome.maps == [{"a": 1.0}, {"b": 2.0}]
        assert outcome.succeeded == ["first", "second"]
        assert outcome.failed == {}

    def test_failed_source_contributes_empty_map(self) -> None:
        """A failing source never aborts the batch."""
        coordinator = SourceFetchCoordinator(
            {"broken": BrokenFetcher(), "ok": StaticFetcher(prices={"a": 1.0})}
        )
        outcome = asyncio.run(coordinator.fetch_all())
        assert outcome.maps == [{}, {"a": 1.0}]
        assert outcome.succeeded == ["ok"]
        assert "upstream exploded" in outcome.failed["broken"]

    def test_timeout_bounded_by_source(self) -> None:
        """A hung source delays the batch by at most its own timeout."""
        coordinator = SourceFetchCoordinator(
            {"hanging": HangingFetcher(), "ok": StaticFetcher(prices={"a": 1.0})},
            fetch_timeout=0.05,
        )
        started = time.monotonic()
        outcome = asyncio.run(coordinator.fetch_all())
        assert time.monotonic() - started < 2.0
        assert outcome.maps == [{}, {"a": 1.0}]
        assert "timeout" in outcome.failed["hanging"]

    def test_all_sources_fail(self, caplog) -> None:
        """All failures yield empty maps and a warning, not an error."""
        coordinator = SourceFetchCoordinator({"x": BrokenFetcher(), "y": BrokenFetcher()})
        with caplog.at_level("WARNING"):
            outcome = asyncio.run(coordinator.fetch_all())
        assert outcome.maps == [{}, {}]
        assert outcome.succeeded == []
        assert "All price sources failed" in caplog.text

    def test_no_fetchers(self) -> None:
        """No fetchers gives an empty outcome."""
        outcome = asyncio.run(SourceFetchCoordinator({}).fetch_all())
        assert outcome.maps == []


class CountingFetcher(BaseFetcher):
    name = "counting"

    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.calls = 0

    async def fetch_prices(self) -> dict[str, float]:
        self.calls += 1
        if self.fail:
            raise FetcherError("upstream exploded")
        return {"a": 1.0}


class TestSourceHealth:
    """Test health tracking across rounds."""

    def test_failed_source_skipped_next_round(self) -> None:
        """A source in backoff is not called and is reported as skipped."""
        broken = CountingFetcher(fail=True)
        manager = SourceManager(["broken", "ok"])
        coordinator = SourceFetchCoordinator(
            {"broken": broken, "ok": CountingFetcher()}, source_manager=manager
        )
        asyncio.run(coordinator.fetch_all())
        outcome = asyncio.run(coordinator.fetch_all())

        assert broken.calls == 1
        assert outcome.skipped == ["broken"]
        assert outcome.maps == [{}, {"a": 1.0}]
        assert "in backoff" in outcome.failed["broken"]
        assert manager.get_source_status("ok").total_successes == 2

    def test_recovered_source_called_again(self) -> None:
        """Once the backoff elapses the source is retried and recovers."""
        fetcher = CountingFetcher(fail=True)
        manager = SourceManager(["flaky"], base_backoff_seconds=0.0, max_backoff_seconds=0.0)
        coordinator = SourceFetchCoordinator({"flaky": fetcher}, source_manager=manager)
        asyncio.run(coordinator.fetch_all())
        fetcher.fail = False
        outcome = asyncio.run(coordinator.fetch_all())

        assert fetcher.calls == 2
        assert outcome.succeeded == ["flaky"]
        assert manager.get_source_status("flaky").consecutive_failures == 0
