"""PricingService: Owner of the pricing snapshot and the exposed operations.

Architecture:
    - The token universe, liquidity graph and LP dependency graph live in one
      immutable PricingSnapshot; refresh() builds a new snapshot and swaps
      the reference, so readers always see a consistent view
    - aggregate_prices() fans out to the configured sources concurrently and
      merges their maps with the configured strategy
    - resolve_token_price() answers single-token queries from the aggregated
      prices, mirror linkage, or the liquidity graph
    - calculate_all_lp_values() values every POOL token level by level
    - run_cycle() runs the full pipeline once: aggregate, fill gaps from the
      liquidity graph, value POOL tokens and compare them with their market
      price
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping

from .errors import ConfigError
from .fetchers import BaseFetcher, get_fetcher
from .LevelProcessingQueue import LevelProcessingQueue, as_price_quotes
from .LiquidityGraph import GraphConfig, GraphStats, LiquidityGraph, pools_from_tokens
from .LpDependencyGraph import DependencyStats, LpDependencyGraph
from .LpValueCalculator import LpValueCalculator
from .PriceAggregator import (
    AggregationConfig,
    AggregationResult,
    PriceAggregator,
    resolve_mirror_base,
)
from .PriceQuote import LPValuationResult, PriceQuote
from .providers import PoolReserveProvider, QuoteProvider, TokenMetadataProvider
from .SourceFetchCoordinator import SourceFetchCoordinator
from .SourceManager import SourceManager, SourceStatus
from .TokenRecord import TokenRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricingSnapshot:
    """One consistent view of the token universe and both graphs.

    :ivar tokens: Read-only token id -> metadata map.
    :ivar liquidity: Liquidity graph for multi-hop pricing.
    :ivar dependencies: LP dependency graph.
    :ivar built_at: Unix timestamp of the build.
    """

    tokens: Mapping[str, TokenRecord]
    liquidity: LiquidityGraph
    dependencies: LpDependencyGraph
    built_at: float


@dataclass
class PricingCycleResult:
    """Outcome of one full pricing cycle.

    :ivar prices: Token id -> resolved price for every non-POOL token.
    :ivar lp_values: POOL token id -> intrinsic valuation.
    :ivar aggregation: Raw aggregation result with source diagnostics.
    :ivar graph_filled: Tokens priced from the liquidity graph only.
    """

    prices: dict[str, PriceQuote] = field(default_factory=dict)
    lp_values: dict[str, LPValuationResult] = field(default_factory=dict)
    aggregation: AggregationResult | None = None
    graph_filled: list[str] = field(default_factory=list)

    @property
    def flagged(self) -> list[str]:
        """POOL tokens whose market price deviates beyond the threshold."""
        return [t for t, result in self.lp_values.items() if result.deviation_flagged]


class PricingService:
    """Resolves USD prices for BASE, MIRROR and POOL tokens.

    :ivar metadata_provider: Token universe source.
    :ivar reserve_provider: Pool reserve source.
    :ivar fetchers: Source name -> fetcher, reused across rounds.
    :ivar quote_provider: Optional redemption quote capability.
    :ivar numeraire_id: Anchor token for multi-hop pricing.
    :ivar aggregation_config: Default aggregation configuration.
    :ivar graph_config: Liquidity graph tuning.
    :ivar source_manager: Per-source health and backoff, kept across rounds.
    """

    def __init__(
        self,
        metadata_provider: TokenMetadataProvider,
        reserve_provider: PoolReserveProvider | None = None,
        fetchers: dict[str, BaseFetcher] | None = None,
        quote_provider: QuoteProvider | None = None,
        numeraire_id: str | None = None,
        aggregation_config: AggregationConfig | None = None,
        graph_config: GraphConfig | None = None,
        api_keys: dict[str, str] | None = None,
        quote_concurrency: int = 8,
        quote_timeout: float = 5.0,
        reference_token_id: str | None = None,
        divergence_warn_percent: float = 5.0,
        deviation_threshold_percent: float = 10.0,
        source_manager: SourceManager | None = None,
    ) -> None:
        """Initialize the service.

        :param metadata_provider: Supplies the token universe.
        :param reserve_provider: Supplies pool reserves (default: derived from
            POOL token records).
        :param fetchers: Preconfigured fetchers; others are created from the
            registry on demand.
        :param quote_provider: Optional redemption quote provider.
        :param numeraire_id: Anchor token for multi-hop pricing; graph pricing
            is disabled when None.
        :param aggregation_config: Default aggregation configuration.
        :param graph_config: Liquidity graph tuning.
        :param api_keys: Source name -> API key for registry-created fetchers.
        :param quote_concurrency: Maximum concurrent valuations per level.
        :param quote_timeout: Seconds to wait for one redemption quote.
        :param reference_token_id: Asset LP reference ratios are expressed in
            (default: the numeraire).
        :param divergence_warn_percent: Quote vs reserve gap that is logged.
        :param deviation_threshold_percent: Market vs intrinsic gap that flags
            a POOL token.
        :param source_manager: Source health tracker (default: one with the
            standard backoff, tracking the configured sources).
        :raises ConfigError: If a numeric setting is invalid.
        """
        if quote_concurrency < 1:
            raise ConfigError("quote_concurrency must be at least 1")
        if quote_timeout <= 0:
            raise ConfigError("quote_timeout must be positive")
        if deviation_threshold_percent < 0 or divergence_warn_percent < 0:
            raise ConfigError("Percent thresholds must be non-negative")

        self.metadata_provider = metadata_provider
        self.reserve_provider = reserve_provider
        self.fetchers: dict[str, BaseFetcher] = dict(fetchers or {})
        self.quote_provider = quote_provider
        self.numeraire_id = numeraire_id
        self.aggregation_config = aggregation_config or AggregationConfig()
        self.graph_config = graph_config or GraphConfig()
        self.api_keys = api_keys or {}
        self.quote_concurrency = quote_concurrency
        self.quote_timeout = quote_timeout
        self.reference_token_id = reference_token_id or numeraire_id
        self.divergence_warn_percent = divergence_warn_percent
        self.deviation_threshold_percent = deviation_threshold_percent
        self.source_manager = source_manager or SourceManager(self.aggregation_config.sources)

        self._snapshot: PricingSnapshot | None = None
        self._latest_prices: dict[str, float] = {}

    @property
    def snapshot(self) -> PricingSnapshot:
        """Current snapshot, built on first access."""
        if self._snapshot is None:
            return self.refresh()
        return self._snapshot

    def refresh(self, known_prices: Mapping[str, float] | None = None) -> PricingSnapshot:
        """Rebuild both graphs from the providers and swap the snapshot.

        :param known_prices: Optional USD prices used to weight liquidity edges
            by USD liquidity.
        :returns: The new snapshot.
        """
        now = time.time()
        tokens = {token.token_id: token for token in self.metadata_provider.list_tokens()}
        if self.reserve_provider is not None:
            pools = self.reserve_provider.list_pools()
        else:
            pools = pools_from_tokens(tokens.values())

        snapshot = PricingSnapshot(
            tokens=MappingProxyType(tokens),
            liquidity=LiquidityGraph.build(pools, self.graph_config, known_prices, now),
            dependencies=LpDependencyGraph.build(tokens.values()),
            built_at=now,
        )
        self._snapshot = snapshot
        logger.info(f"Snapshot refreshed: {len(tokens)} tokens, {len(pools)} pools")
        return snapshot

    def _fetchers_for(self, config: AggregationConfig) -> dict[str, BaseFetcher]:
        fetchers: dict[str, BaseFetcher] = {}
        for name in config.sources:
            if name not in self.fetchers:
                try:
                    self.fetchers[name] = get_fetcher(
                        name, api_key=self.api_keys.get(name), timeout=config.timeout
                    )
                except ValueError as e:
                    raise ConfigError(str(e)) from e
            fetchers[name] = self.fetchers[name]
        return fetchers

    async def aggregate_prices(
        self, config: AggregationConfig | None = None
    ) -> AggregationResult:
        """Fetch every enabled source and merge the results.

        A failed or timed-out source contributes nothing; if all sources fail
        the result carries an empty map.

        :param config: Aggregation configuration (default: the service's).
        :returns: AggregationResult with merged prices and diagnostics.
        :raises ConfigError: If a configured source is not registered.
        """
        config = config or self.aggregation_config
        fetchers = self._fetchers_for(config)
        coordinator = SourceFetchCoordinator(
            fetchers, fetch_timeout=config.timeout, source_manager=self.source_manager
        )
        outcome = await coordinator.fetch_all()

        aggregator = PriceAggregator(config.strategy, config.aliases)
        result = aggregator.aggregate(
            outcome.maps,
            self.snapshot.tokens.values(),
            source_names=list(fetchers),
            failed=outcome.failed,
        )
        result.metadata["skipped"] = list(outcome.skipped)
        self._latest_prices = dict(result.prices)
        logger.info(
            f"Aggregated {len(result.prices)} prices ({config.strategy.value}) "
            f"from {outcome.succeeded or 'no sources'}"
        )
        return result

    def _numeraire_quote(self) -> PriceQuote | None:
        if self.numeraire_id is None:
            return None
        price = self._latest_prices.get(self.numeraire_id)
        if price is None:
            logger.warning(f"Numeraire {self.numeraire_id} has no aggregated price")
            return None
        return PriceQuote(self.numeraire_id, price, 1.0, source="aggregate")

    def resolve_token_price(
        self, token_id: str, max_hops: int | None = None
    ) -> PriceQuote | None:
        """Resolve one token's USD price.

        Directly aggregated prices win; MIRROR tokens take their base's price;
        everything else is resolved through the liquidity graph from the
        numeraire.

        :param token_id: Token to price.
        :param max_hops: Hop bound (default: graph config).
        :returns: PriceQuote, or None if unavailable.
        """
        snapshot = self.snapshot
        token = snapshot.tokens.get(token_id)
        if token is None:
            logger.debug(f"Unknown token {token_id}")
            return None

        direct = self._latest_prices.get(token_id)
        if direct is not None:
            return PriceQuote(token_id, direct, 1.0, source="aggregate", path=(token_id,))

        if token.is_mirror:
            base_id = resolve_mirror_base(token, snapshot.tokens)
            if base_id is None:
                logger.warning(f"Mirror {token_id} has no non-mirror base")
                return None
            base = self.resolve_token_price(base_id, max_hops)
            return replace(base, token_id=token_id) if base is not None else None

        anchor = self._numeraire_quote()
        if anchor is None:
            return None
        resolution = snapshot.liquidity.resolve_price(
            token_id,
            anchor.token_id,
            anchor.usd_price,
            max_hops=max_hops,
            numeraire_confidence=anchor.confidence,
        )
        if not resolution.success:
            logger.debug(f"No price for {token_id}: {resolution.metadata}")
        return resolution.quote

    async def calculate_all_lp_values(
        self, base_prices: Mapping[str, float | PriceQuote]
    ) -> dict[str, LPValuationResult]:
        """Value every POOL token reachable from the given base prices.

        :param base_prices: Token id -> USD price (or PriceQuote).
        :returns: POOL token id -> LPValuationResult; failed tokens are absent.
        """
        snapshot = self.snapshot
        calculator = LpValueCalculator(
            snapshot.tokens,
            quote_provider=self.quote_provider,
            quote_timeout=self.quote_timeout,
            reference_token_id=self.reference_token_id,
            divergence_warn_percent=self.divergence_warn_percent,
        )
        queue = LevelProcessingQueue(
            snapshot.dependencies,
            calculator,
            snapshot.tokens,
            max_concurrency=self.quote_concurrency,
        )
        return await queue.calculate_all(base_prices)

    def get_source_health(self) -> dict[str, SourceStatus]:
        """Health of every price source seen so far."""
        return self.source_manager.get_all_status()

    def get_dependency_stats(self) -> DependencyStats:
        """Level statistics of the LP dependency graph."""
        return self.snapshot.dependencies.stats()

    def get_graph_stats(self) -> GraphStats:
        """Statistics of the liquidity graph snapshot."""
        return self.snapshot.liquidity.stats()

    def _compare_with_market(
        self, result: LPValuationResult, market_price: float | None
    ) -> LPValuationResult:
        if market_price is None or result.usd_price <= 0:
            return result
        deviation = abs(market_price - result.usd_price) / result.usd_price * 100
        flagged = deviation > self.deviation_threshold_percent
        if flagged:
            logger.warning(
                f"{result.token_id}: market ${market_price:.6f} vs intrinsic "
                f"${result.usd_price:.6f} deviates by {deviation:.2f}%"
            )
        return replace(
            result,
            market_price=market_price,
            price_deviation=deviation,
            deviation_flagged=flagged,
        )

    async def run_cycle(self, config: AggregationConfig | None = None) -> PricingCycleResult:
        """Run aggregation, graph gap-filling and LP valuation once.

        :param config: Aggregation configuration (default: the service's).
        :returns: PricingCycleResult; partial results are always kept.
        """
        aggregation = await self.aggregate_prices(config)
        snapshot = self.refresh(known_prices=aggregation.prices)

        quotes = {
            token_id: quote
            for token_id, quote in as_price_quotes(aggregation.prices).items()
            if not (token_id in snapshot.tokens and snapshot.tokens[token_id].is_pool)
        }

        graph_quotes: dict[str, PriceQuote] = {}
        anchor = self._numeraire_quote()
        if anchor is not None:
            graph_quotes = snapshot.liquidity.resolve_all(
                anchor.token_id, anchor.usd_price, numeraire_confidence=anchor.confidence
            )

        graph_filled: list[str] = []
        for token_id, quote in graph_quotes.items():
            token = snapshot.tokens.get(token_id)
            if token_id in quotes or token is None or token.is_pool:
                continue
            quotes[token_id] = quote
            graph_filled.append(token_id)

        for token in snapshot.tokens.values():
            if token.is_mirror and token.token_id not in quotes and token.base_id in quotes:
                quotes[token.token_id] = replace(quotes[token.base_id], token_id=token.token_id)

        lp_values = await self.calculate_all_lp_values(quotes)
        for token_id, result in lp_values.items():
            market_price = aggregation.prices.get(token_id)
            if market_price is None and token_id in graph_quotes:
                market_price = graph_quotes[token_id].usd_price
            lp_values[token_id] = self._compare_with_market(result, market_price)

        cycle = PricingCycleResult(
            prices=quotes,
            lp_values=lp_values,
            aggregation=aggregation,
            graph_filled=graph_filled,
        )
        logger.info(
            f"Cycle complete: {len(quotes)} token prices "
            f"({len(graph_filled)} from graph), {len(lp_values)} LP values, "
            f"{len(cycle.flagged)} flagged"
        )
        return cycle
