"""Unit tests for LiquidityGraph."""

import math

import pytest

from lporacle.src.errors import ConfigError, PathNotFound
from lporacle.src.LiquidityGraph import (
    GraphConfig,
    LiquidityGraph,
    PoolReserves,
    pools_from_tokens,
)
from lporacle.src.TokenRecord import PoolLeg, TokenKind, TokenRecord

NOW = 1_700_000_000.0


def pool(pool_id, token_a, token_b, reserve_a, reserve_b, updated_at=NOW) -> PoolReserves:
    return PoolReserves(pool_id, token_a, token_b, reserve_a, reserve_b, 6, 6, updated_at)


def scenario_a() -> LiquidityGraph:
    return LiquidityGraph.build(
        [
            pool("p1", "x", "usd", 1_000_000, 500_000_000),
            pool("p2", "y", "x", 200_000_000, 100_000_000),
        ],
        now=NOW,
    )


class TestGraphConfig:
    """Test GraphConfig validation."""

    def test_defaults(self) -> None:
        """Default configuration should be valid."""
        config = GraphConfig()
        assert config.max_hops == 4
        assert config.hop_decay == 0.8

    def test_invalid_max_hops(self) -> None:
        """max_hops < 1 should raise ConfigError."""
        with pytest.raises(ConfigError, match="max_hops must be at least 1"):
            GraphConfig(max_hops=0)

    def test_invalid_staleness(self) -> None:
        """max_age below stale_after should raise ConfigError."""
        with pytest.raises(ConfigError, match="stale_after"):
            GraphConfig(stale_after=100, max_age=50)

    def test_invalid_hop_decay(self) -> None:
        """hop_decay outside (0, 1] should raise ConfigError."""
        with pytest.raises(ConfigError, match="hop_decay"):
            GraphConfig(hop_decay=1.5)


class TestGraphBuild:
    """Test graph construction."""

    def test_edges_and_neighbors(self) -> None:
        """Every pool becomes one undirected edge."""
        graph = scenario_a()
        assert len(graph.edges) == 2
        assert graph.has_token("x")
        assert {edge.pool_id for edge in graph.neighbors("x")} == {"p1", "p2"}
        assert graph.neighbors("nope") == ()

    def test_zero_reserve_excluded(self) -> None:
        """A pool with a zero reserve on either leg is never an edge."""
        graph = LiquidityGraph.build(
            [pool("p1", "x", "usd", 0, 500), pool("p2", "y", "usd", 10, 10)], now=NOW
        )
        assert [edge.pool_id for edge in graph.edges] == ["p2"]
        assert graph.stats()["skipped_zero_reserve"] == ["p1"]
        assert not graph.resolve_price("x", "usd", 1.0).success

    def test_expired_pool_excluded(self) -> None:
        """Pools older than max_age are excluded."""
        config = GraphConfig(stale_after=10, max_age=100)
        graph = LiquidityGraph.build(
            [pool("old", "x", "usd", 1, 1, updated_at=NOW - 1000)], config, now=NOW
        )
        assert graph.edges == ()
        assert graph.stats()["skipped_expired"] == ["old"]

    def test_stale_pool_down_weighted(self) -> None:
        """Pools older than stale_after are kept with reduced weight."""
        config = GraphConfig(stale_after=10, max_age=100, stale_penalty=0.5)
        fresh = LiquidityGraph.build([pool("p", "x", "usd", 100, 100)], config, now=NOW)
        stale = LiquidityGraph.build(
            [pool("p", "x", "usd", 100, 100, updated_at=NOW - 50)], config, now=NOW
        )
        assert stale.edges[0].stale
        assert stale.edges[0].liquidity == pytest.approx(fresh.edges[0].liquidity * 0.5)
        assert stale.stats()["stale_edges"] == 1

    def test_usd_liquidity_weight(self) -> None:
        """Known leg prices weight edges by USD liquidity."""
        graph = LiquidityGraph.build(
            [pool("p", "x", "usd", 2_000_000, 3_000_000)],
            known_prices={"x": 5.0, "usd": 1.0},
            now=NOW,
        )
        assert graph.edges[0].liquidity == pytest.approx(2 * 5.0 + 3 * 1.0)

    def test_is_stale(self) -> None:
        """Snapshot age should be compared against max_age."""
        graph = scenario_a()
        assert not graph.is_stale(60, now=NOW + 30)
        assert graph.is_stale(60, now=NOW + 61)

    def test_pools_from_tokens(self) -> None:
        """POOL records with known legs become reserve observations."""
        tokens = [
            TokenRecord("a", 6),
            TokenRecord("b", 8),
            TokenRecord("lp", 6, TokenKind.POOL, legs=(PoolLeg("a", 10), PoolLeg("b", 20))),
            TokenRecord("orphan", 6, TokenKind.POOL, legs=(PoolLeg("a", 1), PoolLeg("zz", 1))),
        ]
        pools = pools_from_tokens(tokens)
        assert len(pools) == 1
        assert pools[0] == PoolReserves("lp", "a", "b", 10, 20, 6, 8, None)


class TestResolvePrice:
    """Test multi-hop price resolution."""

    def test_scenario_two_hops(self) -> None:
        """tokenY resolves through tokenX to the composed edge price."""
        resolution = scenario_a().resolve_price("y", "usd", numeraire_price=1.0)
        assert resolution.success
        assert resolution.quote.usd_price == pytest.approx(250.0)
        assert resolution.quote.path == ("y", "x", "usd")
        assert resolution.quote.hops == 2
        assert resolution.metadata["pools"] == ["p2", "p1"]

    def test_single_hop(self) -> None:
        """Direct edge uses the reserve ratio."""
        quote = scenario_a().resolve_price("x", "usd", numeraire_price=2.0).quote
        assert quote.usd_price == pytest.approx(1000.0)

    def test_numeraire_itself(self) -> None:
        """The numeraire resolves to its own price without hops."""
        quote = scenario_a().resolve_price("usd", "usd", 1.0, numeraire_confidence=0.9).quote
        assert quote.usd_price == 1.0
        assert quote.confidence == 0.9
        assert quote.hops == 0

    def test_hop_bound(self) -> None:
        """A path longer than max_hops is not found; the bound is retained."""
        resolution = scenario_a().resolve_price("y", "usd", 1.0, max_hops=1)
        assert not resolution.success
        assert resolution.error == "path_not_found"
        assert resolution.metadata["hops_attempted"] == 1

    def test_unknown_token(self) -> None:
        """A token without edges is not found, never zero."""
        resolution = scenario_a().resolve_price("ghost", "usd", 1.0)
        assert resolution.quote is None

    def test_find_path_raises(self) -> None:
        """find_path raises PathNotFound carrying the hop bound."""
        with pytest.raises(PathNotFound) as exc_info:
            scenario_a().find_path("y", "usd", max_hops=1)
        assert exc_info.value.max_hops == 1

    def test_prefers_widest_path(self) -> None:
        """A deep two-hop route beats a thin direct pool."""
        graph = LiquidityGraph.build(
            [
                pool("thin", "t", "usd", 1_000, 2_000),
                pool("deep1", "t", "m", 10**12, 10**12),
                pool("deep2", "m", "usd", 10**12, 10**12),
            ],
            now=NOW,
        )
        quote = graph.resolve_price("t", "usd", 1.0).quote
        assert quote.usd_price == pytest.approx(1.0)
        assert quote.path == ("t", "m", "usd")

    def test_confidence_decreases_with_hops(self) -> None:
        """Longer paths carry lower confidence, all else equal."""
        graph = LiquidityGraph.build(
            [
                pool("p1", "a", "usd", 10**12, 10**12),
                pool("p2", "b", "a", 10**12, 10**12),
            ],
            now=NOW,
        )
        one = graph.resolve_price("a", "usd", 1.0).quote
        two = graph.resolve_price("b", "usd", 1.0).quote
        assert 0 < two.confidence < one.confidence < 1

    def test_confidence_decreases_with_thin_liquidity(self) -> None:
        """Thinner pools carry lower confidence, all else equal."""
        graph = LiquidityGraph.build(
            [pool("deep", "a", "usd", 10**12, 10**12), pool("thin", "b", "usd", 10**3, 10**3)],
            now=NOW,
        )
        deep = graph.resolve_price("a", "usd", 1.0).quote
        thin = graph.resolve_price("b", "usd", 1.0).quote
        assert thin.confidence < deep.confidence

    def test_round_trip(self) -> None:
        """Deriving Y from X and back returns the original X price."""
        graph = scenario_a()
        x_price = graph.resolve_price("x", "usd", 1.0).quote.usd_price
        edge = next(e for e in graph.edges if e.pool_id == "p2")
        y_price = edge.derive_price("x", x_price)
        assert edge.derive_price("y", y_price) == pytest.approx(x_price)

    def test_prices_always_finite(self) -> None:
        """Resolved prices are finite and positive."""
        quotes = scenario_a().resolve_all("usd", 1.0)
        assert all(math.isfinite(q.usd_price) and q.usd_price > 0 for q in quotes.values())


class TestResolveAll:
    """Test one-pass resolution of every reachable token."""

    def test_resolves_every_reachable_token(self) -> None:
        """All tokens within the hop bound are priced in one pass."""
        quotes = scenario_a().resolve_all("usd", 1.0)
        assert set(quotes) == {"usd", "x", "y"}
        assert quotes["y"].usd_price == pytest.approx(250.0)
        assert quotes["y"].path == ("y", "x", "usd")
        assert quotes["usd"].source == "numeraire"

    def test_respects_hop_bound(self) -> None:
        """Tokens beyond the bound are absent."""
        quotes = scenario_a().resolve_all("usd", 1.0, max_hops=1)
        assert set(quotes) == {"usd", "x"}

    def test_matches_single_resolution(self) -> None:
        """resolve_all and resolve_price agree."""
        graph = scenario_a()
        single = graph.resolve_price("y", "usd", 1.0).quote
        bulk = graph.resolve_all("usd", 1.0)["y"]
        assert bulk.usd_price == pytest.approx(single.usd_price)
        assert bulk.confidence == pytest.approx(single.confidence)
