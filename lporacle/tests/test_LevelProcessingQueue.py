"""Unit tests for LevelProcessingQueue."""

import asyncio

import pytest

from lporacle.src.LevelProcessingQueue import LevelProcessingQueue, as_price_quotes
from lporacle.src.LpDependencyGraph import LpDependencyGraph
from lporacle.src.LpValueCalculator import LpValueCalculator
from lporacle.src.PriceQuote import PriceQuote
from lporacle.src.providers import QuoteProvider
from lporacle.src.TokenRecord import PoolLeg, TokenKind, TokenRecord


def base(token_id: str) -> TokenRecord:
    return TokenRecord(token_id, 6)


def lp(token_id: str, leg_a: str, leg_b: str) -> TokenRecord:
    return TokenRecord(
        token_id, 6, TokenKind.POOL, legs=(PoolLeg(leg_a, 1_000_000), PoolLeg(leg_b, 1_000_000))
    )


def make_queue(tokens, quote_provider=None, max_concurrency=8) -> LevelProcessingQueue:
    calculator = LpValueCalculator(tokens, quote_provider=quote_provider)
    return LevelProcessingQueue(
        LpDependencyGraph.build(tokens), calculator, tokens, max_concurrency=max_concurrency
    )


def scenario_c() -> list[TokenRecord]:
    return [
        base("a"),
        base("b"),
        base("c"),
        base("d"),
        lp("lp-ab", "a", "b"),
        lp("lp-cd", "c", "d"),
        lp("lp-ab-c", "lp-ab", "c"),
        lp("lp-cd-a", "lp-cd", "a"),
        lp("lp-top", "lp-cd-a", "b"),
        lp("lp-ab-c-a", "lp-ab-c", "a"),
    ]


class ConcurrencyTracker(QuoteProvider):
    def __init__(self) -> None:
        self.active = 0
        self.peak = 0

    async def quote(self, pool_token, unit_amount):
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return None


class TestAsPriceQuotes:
    """Test base price wrapping."""

    def test_floats_wrapped(self) -> None:
        """Plain floats become fully confident quotes."""
        quotes = as_price_quotes({"a": 2.0})
        assert quotes["a"].usd_price == 2.0
        assert quotes["a"].confidence == 1.0
        assert quotes["a"].source == "base"

    def test_quotes_passed_through(self) -> None:
        """Existing PriceQuotes are kept as-is."""
        quote = PriceQuote("a", 2.0, 0.5)
        assert as_price_quotes({"a": quote})["a"] is quote

    def test_invalid_prices_dropped(self) -> None:
        """Non-finite or negative prices are dropped."""
        quotes = as_price_quotes({"a": float("nan"), "b": -1.0, "c": 1.0})
        assert set(quotes) == {"c"}


class TestLevelProcessing:
    """Test level-ordered valuation."""

    def test_nested_values_feed_forward(self) -> None:
        """Higher levels use the values resolved at lower levels."""
        tokens = scenario_c()
        results = asyncio.run(make_queue(tokens).calculate_all({"a": 2.0, "b": 3.0, "c": 1.0}))

        # Balanced 1:1 reserves with 6 decimals redeem one unit of each leg.
        assert results["lp-ab"].usd_price == pytest.approx(5.0)
        assert results["lp-ab-c"].usd_price == pytest.approx(6.0)
        assert results["lp-ab-c-a"].usd_price == pytest.approx(8.0)
        assert results["lp-ab"].level == 0
        assert results["lp-ab-c"].level == 1
        assert results["lp-ab-c-a"].level == 2

    def test_failure_cascades(self) -> None:
        """A failed level-0 dependency removes its dependents, not siblings."""
        tokens = scenario_c()
        results = asyncio.run(make_queue(tokens).calculate_all({"a": 2.0, "b": 3.0, "c": 1.0}))
        assert set(results) == {"lp-ab", "lp-ab-c", "lp-ab-c-a"}
        assert "lp-cd" not in results
        assert "lp-cd-a" not in results
        assert "lp-top" not in results

    def test_absent_never_zero(self) -> None:
        """Failed tokens are absent, never present as None or zero."""
        results = asyncio.run(make_queue(scenario_c()).calculate_all({}))
        assert results == {}

    def test_confidence_propagates(self) -> None:
        """Nested results inherit the weakest underlying confidence."""
        tokens = scenario_c()
        base_prices = {
            "a": PriceQuote("a", 2.0, 0.9),
            "b": PriceQuote("b", 3.0, 0.6),
            "c": PriceQuote("c", 1.0, 1.0),
        }
        results = asyncio.run(make_queue(tokens).calculate_all(base_prices))
        assert results["lp-ab"].confidence == 0.6
        assert results["lp-ab-c-a"].confidence == 0.6

    def test_mirror_leg_uses_base_price(self) -> None:
        """MIRROR legs resolve to their base price before valuation."""
        tokens = [
            base("a"),
            base("b"),
            TokenRecord("m", 6, TokenKind.MIRROR, base_id="a"),
            lp("lp-mb", "m", "b"),
        ]
        results = asyncio.run(make_queue(tokens).calculate_all({"a": 2.0, "b": 3.0}))
        assert results["lp-mb"].usd_price == pytest.approx(5.0)

    def test_cycle_excluded(self) -> None:
        """Cyclic tokens are skipped while unrelated tokens still resolve."""
        tokens = scenario_c() + [lp("c1", "c2", "a"), lp("c2", "c1", "b")]
        results = asyncio.run(make_queue(tokens).calculate_all({"a": 2.0, "b": 3.0, "c": 1.0}))
        assert "c1" not in results
        assert "c2" not in results
        assert "lp-ab-c-a" in results

    def test_bounded_concurrency(self) -> None:
        """Same-level quote calls never exceed the fan-out bound."""
        tokens = [base("a"), base("b")] + [lp(f"lp{i}", "a", "b") for i in range(6)]
        tracker = ConcurrencyTracker()
        results = asyncio.run(
            make_queue(tokens, quote_provider=tracker, max_concurrency=2).calculate_all(
                {"a": 1.0, "b": 1.0}
            )
        )
        assert len(results) == 6
        assert 1 <= tracker.peak <= 2

    def test_invalid_concurrency(self) -> None:
        """max_concurrency < 1 should raise ValueError."""
        tokens = scenario_c()
        with pytest.raises(ValueError, match="max_concurrency must be at least 1"):
            make_queue(tokens, max_concurrency=0)
