"""LiquidityGraph: Multi-hop market pricing over pool reserves.

The graph is an immutable snapshot: one undirected edge per pool reserve pair,
weighted by liquidity. A refresh builds a new graph and swaps the reference;
nothing mutates a graph that readers may hold.

Price propagation along an edge (X, Y) with reserves (rX, rY) and decimals
(decX, decY)::

    priceY = priceX * (rX / 10**decX) / (rY / 10**decY)

Path search is best-first from the token towards the numeraire, bounded by
max_hops. The path with the widest bottleneck (largest minimum edge
liquidity) wins; ties go to the shorter path. Confidence decays per hop,
with thinner bottleneck liquidity, and when a stale edge is used.

.. code-block:: python

    >>> graph = LiquidityGraph.build([
    ...     PoolReserves("p1", "x", "usd", 1_000_000, 500_000_000, 6, 6),
    ...     PoolReserves("p2", "y", "x", 200_000_000, 100_000_000, 6, 6),
    ... ])
    >>> graph.resolve_price("y", "usd", numeraire_price=1.0).quote.usd_price
    250.0
"""

from __future__ import annotations

import heapq
import itertools
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, TypedDict

from .errors import ConfigError, PathNotFound, TokenNotFound, ZeroReserve
from .PriceQuote import PriceQuote
from .TokenRecord import TokenRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolReserves:
    """Reserve observation for one pool, as supplied by the reserve provider.

    :ivar pool_id: Pool (LP token) id.
    :ivar token_a: Id of the first reserve token.
    :ivar token_b: Id of the second reserve token.
    :ivar reserve_a: Atomic reserve of token_a.
    :ivar reserve_b: Atomic reserve of token_b.
    :ivar decimals_a: Decimals of token_a.
    :ivar decimals_b: Decimals of token_b.
    :ivar updated_at: Unix timestamp of the observation (None means now).
    """

    pool_id: str
    token_a: str
    token_b: str
    reserve_a: int
    reserve_b: int
    decimals_a: int
    decimals_b: int
    updated_at: float | None = None


@dataclass(frozen=True)
class LiquidityEdge:
    """Undirected pool edge between two tokens.

    :ivar liquidity: Path-search weight; USD liquidity when both leg prices
        were known at build time, otherwise the geometric mean of the atomic
        reserves. Already reduced by the stale penalty for stale edges.
    :ivar stale: True if the reserve observation is older than stale_after.
    """

    pool_id: str
    token_a: str
    token_b: str
    reserve_a: int
    reserve_b: int
    decimals_a: int
    decimals_b: int
    liquidity: float
    updated_at: float
    stale: bool = False

    @classmethod
    def from_reserves(
        cls,
        pool: PoolReserves,
        *,
        known_prices: Mapping[str, float] | None = None,
        updated_at: float,
        stale: bool = False,
        stale_penalty: float = 1.0,
    ) -> LiquidityEdge:
        """Build an edge from a reserve observation.

        :raises ZeroReserve: If either reserve is not strictly positive.
        """
        if pool.reserve_a <= 0 or pool.reserve_b <= 0:
            raise ZeroReserve(pool.pool_id)

        amount_a = pool.reserve_a / 10 ** pool.decimals_a
        amount_b = pool.reserve_b / 10 ** pool.decimals_b
        prices = known_prices or {}
        if pool.token_a in prices and pool.token_b in prices:
            liquidity = amount_a * prices[pool.token_a] + amount_b * prices[pool.token_b]
        else:
            liquidity = math.sqrt(pool.reserve_a) * math.sqrt(pool.reserve_b)
        if stale:
            liquidity *= stale_penalty

        return cls(
            pool_id=pool.pool_id,
            token_a=pool.token_a,
            token_b=pool.token_b,
            reserve_a=pool.reserve_a,
            reserve_b=pool.reserve_b,
            decimals_a=pool.decimals_a,
            decimals_b=pool.decimals_b,
            liquidity=liquidity,
            updated_at=updated_at,
            stale=stale,
        )

    def other(self, token_id: str) -> str:
        """Return the token on the opposite side of the edge."""
        if token_id == self.token_a:
            return self.token_b
        if token_id == self.token_b:
            return self.token_a
        raise KeyError(f"{token_id} is not a leg of pool {self.pool_id}")

    def amount(self, token_id: str) -> float:
        """Reserve of token_id in decimal units."""
        if token_id == self.token_a:
            return self.reserve_a / 10 ** self.decimals_a
        if token_id == self.token_b:
            return self.reserve_b / 10 ** self.decimals_b
        raise KeyError(f"{token_id} is not a leg of pool {self.pool_id}")

    def derive_price(self, from_token: str, from_price: float) -> float:
        """Price of the opposite token given the price of from_token."""
        to_token = self.other(from_token)
        return from_price * self.amount(from_token) / self.amount(to_token)


@dataclass
class GraphConfig:
    """Liquidity graph tuning.

    :ivar max_hops: Default hop bound for path search.
    :ivar stale_after: Seconds after which an edge is down-weighted.
    :ivar max_age: Seconds after which an edge is excluded entirely.
    :ivar stale_penalty: Liquidity and confidence multiplier for stale edges.
    :ivar hop_decay: Confidence multiplier per hop.
    :ivar liquidity_reference: Bottleneck liquidity giving a 0.5 liquidity score.
    """

    max_hops: int = 4
    stale_after: float = 3600.0
    max_age: float = 86400.0
    stale_penalty: float = 0.5
    hop_decay: float = 0.8
    liquidity_reference: float = 10_000.0

    def __post_init__(self) -> None:
        if self.max_hops < 1:
            raise ConfigError("max_hops must be at least 1")
        if self.stale_after <= 0 or self.max_age < self.stale_after:
            raise ConfigError("stale_after must be positive and not exceed max_age")
        if not 0 < self.stale_penalty <= 1:
            raise ConfigError("stale_penalty must be within (0, 1]")
        if not 0 < self.hop_decay <= 1:
            raise ConfigError("hop_decay must be within (0, 1]")
        if self.liquidity_reference <= 0:
            raise ConfigError("liquidity_reference must be positive")


class GraphStats(TypedDict):
    """Snapshot statistics, for observability only."""

    tokens: int
    edges: int
    stale_edges: int
    skipped_zero_reserve: list[str]
    skipped_expired: list[str]
    built_at: float


@dataclass
class PathResolution:
    """Outcome of a single-token price resolution.

    :ivar quote: Resolved price, or None if no usable path exists.
    :ivar metadata: Diagnostics (path, pools, bottleneck, or error and the
        attempted hop bound).
    """

    quote: PriceQuote | None
    metadata: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Check if a price was resolved."""
        return self.quote is not None

    @property
    def error(self) -> str | None:
        """Get error type if resolution failed."""
        if self.quote is None:
            return self.metadata.get("error")
        return None


@dataclass(frozen=True)
class _Path:
    tokens: tuple[str, ...]
    edges: tuple[LiquidityEdge, ...]
    bottleneck: float


def pools_from_tokens(tokens: Iterable[TokenRecord]) -> list[PoolReserves]:
    """Derive pool reserve observations from POOL token records.

    Pools whose leg metadata is missing are skipped.

    :param tokens: Token universe.
    :returns: One PoolReserves per POOL token with known legs.
    """
    by_id = {token.token_id: token for token in tokens}
    pools: list[PoolReserves] = []
    for token in by_id.values():
        if not token.is_pool or token.legs is None:
            continue
        leg_a, leg_b = token.legs
        try:
            decimals_a = _decimals_of(leg_a.token_id, by_id)
            decimals_b = _decimals_of(leg_b.token_id, by_id)
        except TokenNotFound as e:
            logger.warning(f"[graph] Skipping pool {token.token_id}: {e}")
            continue
        pools.append(
            PoolReserves(
                pool_id=token.token_id,
                token_a=leg_a.token_id,
                token_b=leg_b.token_id,
                reserve_a=leg_a.reserve,
                reserve_b=leg_b.reserve,
                decimals_a=decimals_a,
                decimals_b=decimals_b,
                updated_at=token.updated_at,
            )
        )
    return pools


def _decimals_of(token_id: str, by_id: Mapping[str, TokenRecord]) -> int:
    token = by_id.get(token_id)
    if token is None:
        raise TokenNotFound(token_id)
    return token.decimals


class LiquidityGraph:
    """Immutable weighted graph of pools used for multi-hop pricing.

    :ivar config: Graph tuning.
    :ivar built_at: Unix timestamp of the build.
    """

    def __init__(
        self,
        edges: Iterable[LiquidityEdge],
        config: GraphConfig | None = None,
        built_at: float | None = None,
        skipped_zero_reserve: Iterable[str] = (),
        skipped_expired: Iterable[str] = (),
    ) -> None:
        self.config = config or GraphConfig()
        self.built_at = built_at if built_at is not None else time.time()
        self._edges: tuple[LiquidityEdge, ...] = tuple(edges)
        adjacency: dict[str, list[LiquidityEdge]] = {}
        for edge in self._edges:
            adjacency.setdefault(edge.token_a, []).append(edge)
            adjacency.setdefault(edge.token_b, []).append(edge)
        self._adjacency = {token: tuple(edges) for token, edges in adjacency.items()}
        self._skipped_zero_reserve = tuple(skipped_zero_reserve)
        self._skipped_expired = tuple(skipped_expired)

    @classmethod
    def build(
        cls,
        pools: Iterable[PoolReserves],
        config: GraphConfig | None = None,
        known_prices: Mapping[str, float] | None = None,
        now: float | None = None,
    ) -> LiquidityGraph:
        """Build a graph snapshot from pool reserve observations.

        Zero-reserve pools and pools older than max_age are excluded; pools
        older than stale_after are kept with reduced weight.

        :param pools: Reserve observations.
        :param config: Graph tuning.
        :param known_prices: Optional USD prices used to weight edges by USD
            liquidity instead of raw reserve magnitude.
        :param now: Build time (default: current time).
        :returns: New LiquidityGraph.
        """
        config = config or GraphConfig()
        now = now if now is not None else time.time()
        edges: list[LiquidityEdge] = []
        zero_reserve: list[str] = []
        expired: list[str] = []

        for pool in pools:
            updated_at = pool.updated_at if pool.updated_at is not None else now
            age = now - updated_at
            if age > config.max_age:
                logger.debug(f"[graph] Excluding expired pool {pool.pool_id} (age {age:.0f}s)")
                expired.append(pool.pool_id)
                continue
            try:
                edge = LiquidityEdge.from_reserves(
                    pool,
                    known_prices=known_prices,
                    updated_at=updated_at,
                    stale=age > config.stale_after,
                    stale_penalty=config.stale_penalty,
                )
            except ZeroReserve as e:
                logger.warning(f"[graph] {e}, excluded")
                zero_reserve.append(pool.pool_id)
                continue
            edges.append(edge)

        graph = cls(edges, config, now, zero_reserve, expired)
        logger.info(
            f"[graph] Built liquidity graph: {len(graph._adjacency)} tokens, "
            f"{len(edges)} pools ({len(zero_reserve)} zero-reserve, {len(expired)} expired)"
        )
        return graph

    @property
    def edges(self) -> tuple[LiquidityEdge, ...]:
        """All edges in the snapshot."""
        return self._edges

    def has_token(self, token_id: str) -> bool:
        """Check if the token has at least one edge."""
        return token_id in self._adjacency

    def neighbors(self, token_id: str) -> tuple[LiquidityEdge, ...]:
        """Edges touching token_id."""
        return self._adjacency.get(token_id, ())

    def is_stale(self, max_age: float, now: float | None = None) -> bool:
        """Check if the snapshot is older than max_age seconds."""
        now = now if now is not None else time.time()
        return now - self.built_at > max_age

    def stats(self) -> GraphStats:
        """Snapshot statistics."""
        return {
            "tokens": len(self._adjacency),
            "edges": len(self._edges),
            "stale_edges": sum(1 for edge in self._edges if edge.stale),
            "skipped_zero_reserve": list(self._skipped_zero_reserve),
            "skipped_expired": list(self._skipped_expired),
            "built_at": self.built_at,
        }

    def _search(self, source: str, max_hops: int) -> Iterator[_Path]:
        """Best-first widest-path search from source, bounded by max_hops.

        Yields the best path to each reachable token once, in order of
        decreasing bottleneck liquidity (fewer hops first on ties).
        """
        counter = itertools.count()
        heap: list[tuple[float, int, int, _Path]] = [
            (-math.inf, 0, next(counter), _Path((source,), (), math.inf))
        ]
        expanded: set[tuple[str, int]] = set()
        reached: set[str] = set()

        while heap:
            _, hops, _, path = heapq.heappop(heap)
            node = path.tokens[-1]
            if node not in reached:
                reached.add(node)
                yield path
            if hops >= max_hops or (node, hops) in expanded:
                continue
            expanded.add((node, hops))

            for edge in self._adjacency.get(node, ()):
                nxt = edge.other(node)
                if nxt in path.tokens:
                    continue
                bottleneck = min(path.bottleneck, edge.liquidity)
                extended = _Path(path.tokens + (nxt,), path.edges + (edge,), bottleneck)
                heapq.heappush(heap, (-bottleneck, hops + 1, next(counter), extended))

    def find_path(
        self, token_id: str, numeraire_id: str, max_hops: int | None = None
    ) -> tuple[tuple[str, ...], tuple[LiquidityEdge, ...]]:
        """Find the best path from token_id to numeraire_id.

        :returns: (tokens, edges) with tokens[0] == token_id and
            tokens[-1] == numeraire_id.
        :raises PathNotFound: If no path exists within the hop bound.
        """
        max_hops = max_hops if max_hops is not None else self.config.max_hops
        for path in self._search(token_id, max_hops):
            if path.tokens[-1] == numeraire_id:
                return path.tokens, path.edges
        raise PathNotFound(token_id, numeraire_id, max_hops)

    def _confidence(self, path: _Path, anchor_confidence: float) -> float:
        hops = len(path.edges)
        if hops == 0:
            return anchor_confidence
        reference = self.config.liquidity_reference
        liquidity_score = path.bottleneck / (path.bottleneck + reference)
        confidence = anchor_confidence * self.config.hop_decay ** hops * liquidity_score
        if any(edge.stale for edge in path.edges):
            confidence *= self.config.stale_penalty
        return min(1.0, max(0.0, confidence))

    def _price_along(self, path: _Path, anchor_price: float) -> float:
        """Walk a path that starts at the anchor, returning the end token's price."""
        price = anchor_price
        for token, edge in zip(path.tokens, path.edges):
            price = edge.derive_price(token, price)
        return price

    def resolve_price(
        self,
        token_id: str,
        numeraire_id: str,
        numeraire_price: float,
        max_hops: int | None = None,
        numeraire_confidence: float = 1.0,
    ) -> PathResolution:
        """Resolve token_id's USD price via the best path to the numeraire.

        :param token_id: Token to price.
        :param numeraire_id: Anchor token with a known USD price.
        :param numeraire_price: USD price of the numeraire.
        :param max_hops: Hop bound (default: config.max_hops).
        :param numeraire_confidence: Confidence of the numeraire price.
        :returns: PathResolution; never a zero or non-finite fabricated price.
        """
        max_hops = max_hops if max_hops is not None else self.config.max_hops
        if token_id == numeraire_id:
            quote = PriceQuote(
                token_id=token_id,
                usd_price=numeraire_price,
                confidence=numeraire_confidence,
                source="numeraire",
                path=(token_id,),
            )
            return PathResolution(quote, {"path": [token_id], "pools": [], "hops": 0})

        try:
            tokens, edges = self.find_path(token_id, numeraire_id, max_hops)
        except PathNotFound as e:
            logger.debug(f"[graph] {e}")
            return PathResolution(
                None, {"error": "path_not_found", "hops_attempted": e.max_hops}
            )

        # Walk outward from the numeraire so prices propagate from the anchor.
        anchored = _Path(
            tuple(reversed(tokens)),
            tuple(reversed(edges)),
            min(edge.liquidity for edge in edges),
        )
        price = self._price_along(anchored, numeraire_price)
        if not math.isfinite(price) or price <= 0:
            return PathResolution(
                None, {"error": "invalid_price", "hops_attempted": max_hops}
            )

        quote = PriceQuote(
            token_id=token_id,
            usd_price=price,
            confidence=self._confidence(anchored, numeraire_confidence),
            source="graph",
            path=tokens,
        )
        return PathResolution(
            quote,
            {
                "path": list(tokens),
                "pools": [edge.pool_id for edge in edges],
                "hops": len(edges),
                "bottleneck": anchored.bottleneck,
            },
        )

    def resolve_all(
        self,
        numeraire_id: str,
        numeraire_price: float,
        max_hops: int | None = None,
        numeraire_confidence: float = 1.0,
    ) -> dict[str, PriceQuote]:
        """Resolve every token reachable from the numeraire in one pass.

        :returns: Token id -> PriceQuote for every reachable token, including
            the numeraire itself.
        """
        max_hops = max_hops if max_hops is not None else self.config.max_hops
        quotes: dict[str, PriceQuote] = {}
        for path in self._search(numeraire_id, max_hops):
            token_id = path.tokens[-1]
            price = self._price_along(path, numeraire_price)
            if not math.isfinite(price) or price <= 0:
                logger.debug(f"[graph] Discarding invalid price for {token_id}")
                continue
            quotes[token_id] = PriceQuote(
                token_id=token_id,
                usd_price=price,
                confidence=self._confidence(path, numeraire_confidence),
                source="graph" if path.edges else "numeraire",
                path=tuple(reversed(path.tokens)),
            )
        return quotes
