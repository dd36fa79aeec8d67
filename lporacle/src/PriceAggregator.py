"""PriceAggregator: Multi-source price map merging.

Algorithm:
    1. Reconcile numeraire aliases inside each source map (qualified key wins)
    2. Merge the source maps with the configured strategy
    3. Back-fill the bare alias keys from their qualified keys
    4. Propagate base prices onto MIRROR tokens (exact copy, never sourced)

Strategies:
    - primary_a: the first source overrides, the others fill gaps
    - primary_b: the second source overrides, the others fill gaps
    - average: arithmetic mean over the sources that report a token
    - fallback: alias of primary_b, kept for explicit intent

.. code-block:: python

    >>> aggregate([{"a": 1.0, "b": 2.0}, {"a": 3.0}], MergeStrategy.AVERAGE)
    {'a': 2.0, 'b': 2.0}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Mapping, Sequence, TypedDict

from .errors import ConfigError
from .TokenRecord import TokenRecord

logger = logging.getLogger(__name__)

PriceMap = dict[str, float]


class MergeStrategy(str, Enum):
    """How overlapping source prices are reconciled."""

    PRIMARY_A = "primary_a"
    PRIMARY_B = "primary_b"
    AVERAGE = "average"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class NumeraireAlias:
    """Two symbolic keys for the same reference asset.

    :ivar qualified: Canonical, fully-qualified key (e.g. ".stx").
    :ivar bare: Bare key some sources use instead (e.g. "stx").
    """

    qualified: str
    bare: str


DEFAULT_ALIASES: tuple[NumeraireAlias, ...] = (NumeraireAlias(".stx", "stx"),)


@dataclass
class AggregationConfig:
    """Configuration for one aggregation round.

    :ivar strategy: Merge strategy.
    :ivar timeout: Per-source fetch timeout in seconds.
    :ivar sources: Enabled source names, in priority order (A, B, ...).
    :ivar aliases: Numeraire aliases to reconcile.
    """

    strategy: MergeStrategy = MergeStrategy.AVERAGE
    timeout: float = 5.0
    sources: tuple[str, ...] = ("stxtools", "internal")
    aliases: tuple[NumeraireAlias, ...] = DEFAULT_ALIASES

    def __post_init__(self) -> None:
        try:
            self.strategy = MergeStrategy(self.strategy)
        except ValueError as e:
            valid = ", ".join(s.value for s in MergeStrategy)
            raise ConfigError(f"Unknown strategy '{self.strategy}'. Valid: {valid}") from e
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        self.sources = tuple(self.sources)
        if not self.sources:
            raise ConfigError("At least one price source must be enabled")


class AggregationMetadata(TypedDict, total=False):
    """Diagnostics about an aggregation round.

    :ivar strategy: Strategy used for merging.
    :ivar sources: Sources that contributed data.
    :ivar failed: Sources that failed, with reasons.
    :ivar skipped: Sources not called because they are in backoff.
    :ivar unresolved_mirrors: MIRROR tokens whose base had no price.
    :ivar count: Number of tokens in the merged map.
    """

    strategy: str
    sources: list[str]
    failed: dict[str, str]
    skipped: list[str]
    unresolved_mirrors: list[str]
    count: int


@dataclass
class AggregationResult:
    """Result of price aggregation.

    :ivar prices: Merged token id -> USD price map (possibly empty).
    :ivar metadata: Diagnostics about the round.
    """

    prices: PriceMap
    metadata: AggregationMetadata = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Check if aggregation produced any price."""
        return bool(self.prices)


def _merge_with_primary(source_maps: Sequence[PriceMap], primary: int) -> PriceMap:
    merged: PriceMap = {}
    for index, prices in enumerate(source_maps):
        if index != primary:
            for token_id, price in prices.items():
                merged.setdefault(token_id, price)
    if primary < len(source_maps):
        merged.update(source_maps[primary])
    return merged


def merge_primary_a(source_maps: Sequence[PriceMap]) -> PriceMap:
    """First source overrides; remaining sources fill gaps in order."""
    return _merge_with_primary(source_maps, 0)


def merge_primary_b(source_maps: Sequence[PriceMap]) -> PriceMap:
    """Second source overrides; remaining sources fill gaps in order."""
    return _merge_with_primary(source_maps, 1)


def merge_average(source_maps: Sequence[PriceMap]) -> PriceMap:
    """Arithmetic mean over the sources that report each token."""
    totals: dict[str, float] = {}
    counts: dict[str, int] = {}
    for prices in source_maps:
        for token_id, price in prices.items():
            totals[token_id] = totals.get(token_id, 0.0) + price
            counts[token_id] = counts.get(token_id, 0) + 1
    return {token_id: totals[token_id] / counts[token_id] for token_id in totals}


MERGE_FUNCTIONS: dict[MergeStrategy, Callable[[Sequence[PriceMap]], PriceMap]] = {
    MergeStrategy.PRIMARY_A: merge_primary_a,
    MergeStrategy.PRIMARY_B: merge_primary_b,
    MergeStrategy.AVERAGE: merge_average,
    MergeStrategy.FALLBACK: merge_primary_b,
}


def reconcile_aliases(prices: PriceMap, aliases: Iterable[NumeraireAlias]) -> PriceMap:
    """Collapse alias keys of one source map onto a single logical value.

    The qualified key is canonical: when both keys are present the qualified
    value wins; when only the bare key is present it is copied to the
    qualified key. The bare key is dropped so the merge sees one entity.

    :param prices: Price map from one source.
    :param aliases: Aliases to reconcile.
    :returns: New map with only qualified keys for aliased assets.
    """
    result = dict(prices)
    for alias in aliases:
        bare_price = result.pop(alias.bare, None)
        if alias.qualified not in result and bare_price is not None:
            result[alias.qualified] = bare_price
    return result


def backfill_aliases(prices: PriceMap, aliases: Iterable[NumeraireAlias]) -> None:
    """Copy each qualified alias price onto its bare key, in place."""
    for alias in aliases:
        if alias.qualified in prices:
            prices[alias.bare] = prices[alias.qualified]
        else:
            logger.warning(
                f"Price data is missing both '{alias.bare}' and '{alias.qualified}'"
            )


def propagate_mirrors(prices: PriceMap, tokens: Iterable[TokenRecord]) -> list[str]:
    """Assign every MIRROR token exactly its base token's price, in place.

    A mirror whose base is unresolved is removed from the map (a mirror is
    never independently sourced) and reported.

    :param prices: Merged price map, modified in place.
    :param tokens: Token universe.
    :returns: Ids of mirrors left unresolved.
    """
    by_id = {token.token_id: token for token in tokens}
    unresolved: list[str] = []
    for token in by_id.values():
        if not token.is_mirror:
            continue
        base_id = resolve_mirror_base(token, by_id)
        if base_id is not None and base_id in prices:
            prices[token.token_id] = prices[base_id]
        else:
            prices.pop(token.token_id, None)
            unresolved.append(token.token_id)
            logger.warning(
                f"Price for base token '{token.base_id}' "
                f"(for mirror '{token.token_id}') not found"
            )
    return unresolved


def resolve_mirror_base(token: TokenRecord, by_id: Mapping[str, TokenRecord]) -> str | None:
    """Follow a mirror chain to its non-mirror base; None on a mirror loop."""
    seen = {token.token_id}
    base_id = token.base_id
    while base_id is not None:
        base = by_id.get(base_id)
        if base is None or not base.is_mirror:
            return base_id
        if base_id in seen:
            return None
        seen.add(base_id)
        base_id = base.base_id
    return None


def aggregate(
    source_maps: Sequence[PriceMap],
    strategy: MergeStrategy | str = MergeStrategy.AVERAGE,
    tokens: Iterable[TokenRecord] = (),
    aliases: Iterable[NumeraireAlias] = DEFAULT_ALIASES,
) -> PriceMap:
    """Merge source price maps into one map.

    :param source_maps: One map per source, in priority order.
    :param strategy: Merge strategy.
    :param tokens: Token universe used for mirror propagation.
    :param aliases: Numeraire aliases to reconcile.
    :returns: Merged token id -> USD price map.
    """
    return PriceAggregator(strategy, aliases).aggregate(source_maps, tokens).prices


class PriceAggregator:
    """Merges per-source price maps under a configurable strategy.

    :ivar strategy: Merge strategy.
    :ivar aliases: Numeraire aliases to reconcile.

    .. code-block:: python

        >>> agg = PriceAggregator(MergeStrategy.PRIMARY_A)
        >>> agg.aggregate([{"a": 1.0}, {"a": 2.0, "b": 5.0}]).prices
        {'a': 1.0, 'b': 5.0}
    """

    def __init__(
        self,
        strategy: MergeStrategy | str = MergeStrategy.AVERAGE,
        aliases: Iterable[NumeraireAlias] = DEFAULT_ALIASES,
    ) -> None:
        """Initialize the aggregator.

        :param strategy: Merge strategy or its string value.
        :param aliases: Numeraire aliases to reconcile.
        :raises ConfigError: If strategy is unknown.
        """
        try:
            self.strategy = MergeStrategy(strategy)
        except ValueError as e:
            raise ConfigError(f"Unknown strategy '{strategy}'") from e
        self.aliases = tuple(aliases)

    def aggregate(
        self,
        source_maps: Sequence[PriceMap],
        tokens: Iterable[TokenRecord] = (),
        *,
        source_names: Sequence[str] | None = None,
        failed: dict[str, str] | None = None,
    ) -> AggregationResult:
        """Merge source maps, reconcile aliases and propagate mirror prices.

        :param source_maps: One map per source, in priority order. Failed
            sources contribute an empty map.
        :param tokens: Token universe used for mirror propagation.
        :param source_names: Optional names of the sources, for metadata.
        :param failed: Optional failed source -> reason, for metadata.
        :returns: AggregationResult; an empty price map is not an error.
        """
        reconciled = [reconcile_aliases(prices, self.aliases) for prices in source_maps]
        merged = MERGE_FUNCTIONS[self.strategy](reconciled)
        if merged:
            backfill_aliases(merged, self.aliases)
        unresolved = propagate_mirrors(merged, tokens)

        names = list(source_names) if source_names else [
            f"source{i}" for i in range(len(source_maps))
        ]
        contributing = [
            name for name, prices in zip(names, source_maps) if prices
        ]
        return AggregationResult(
            prices=merged,
            metadata={
                "strategy": self.strategy.value,
                "sources": contributing,
                "failed": dict(failed or {}),
                "unresolved_mirrors": unresolved,
                "count": len(merged),
            },
        )
