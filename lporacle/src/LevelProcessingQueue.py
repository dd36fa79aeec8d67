"""LevelProcessingQueue: Dependency-ordered valuation of POOL tokens.

Levels of the LP dependency graph are processed in ascending order. Tokens
within a level are independent and are valued concurrently, with a bounded
fan-out so quote calls do not overwhelm the quoting surface. Every resolved
valuation is fed forward as a leg price for the next level.

A failed valuation is omitted from the forwarded map, so tokens depending on
it fail too: absence cascades, it never crashes the batch. Cyclic tokens and
tokens depending on a cycle have no level and are never valued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Iterable, Mapping

from .LpDependencyGraph import LpDependencyGraph
from .LpValueCalculator import LpValueCalculator
from .PriceQuote import LPValuationResult, PriceQuote
from .TokenRecord import TokenRecord

logger = logging.getLogger(__name__)


def as_price_quotes(prices: Mapping[str, float | PriceQuote]) -> dict[str, PriceQuote]:
    """Wrap plain USD floats as fully-confident PriceQuotes.

    Entries that are not valid prices (negative, NaN, infinite) are dropped.
    """
    quotes: dict[str, PriceQuote] = {}
    for token_id, price in prices.items():
        if isinstance(price, PriceQuote):
            quotes[token_id] = price
            continue
        try:
            quotes[token_id] = PriceQuote(token_id, float(price), 1.0, source="base")
        except (TypeError, ValueError):
            logger.debug(f"[queue] Ignoring invalid base price for {token_id}: {price!r}")
    return quotes


class LevelProcessingQueue:
    """Walks the dependency graph level by level.

    :ivar graph: LP dependency graph.
    :ivar calculator: Intrinsic value calculator.
    :ivar tokens: Token id -> metadata.
    :ivar max_concurrency: Maximum concurrent valuations within a level.
    """

    def __init__(
        self,
        graph: LpDependencyGraph,
        calculator: LpValueCalculator,
        tokens: Mapping[str, TokenRecord] | Iterable[TokenRecord],
        max_concurrency: int = 8,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.graph = graph
        self.calculator = calculator
        if isinstance(tokens, Mapping):
            self.tokens = dict(tokens)
        else:
            self.tokens = {token.token_id: token for token in tokens}
        self.max_concurrency = max_concurrency

    def _fill_mirrors(self, known: dict[str, PriceQuote]) -> None:
        """Give unresolved MIRROR tokens their base's price, following chains."""
        changed = True
        while changed:
            changed = False
            for token in self.tokens.values():
                if not token.is_mirror or token.token_id in known:
                    continue
                base = known.get(token.base_id)
                if base is not None:
                    known[token.token_id] = replace(base, token_id=token.token_id)
                    changed = True

    async def _valuate(
        self,
        token_id: str,
        level: int,
        known: Mapping[str, PriceQuote],
        semaphore: asyncio.Semaphore,
    ) -> LPValuationResult | None:
        pool = self.tokens.get(token_id)
        if pool is None:
            return None
        async with semaphore:
            result = await self.calculator.valuate(pool, known)
        if result is None:
            return None
        return replace(result, level=level)

    async def calculate_all(
        self, base_usd_prices: Mapping[str, float | PriceQuote]
    ) -> dict[str, LPValuationResult]:
        """Value every POOL token reachable from the given base prices.

        :param base_usd_prices: Token id -> USD price (or PriceQuote) of
            non-POOL tokens. Plain floats are treated as fully confident.
        :returns: POOL token id -> LPValuationResult. Unreachable or failed
            tokens are absent.
        """
        known = as_price_quotes(base_usd_prices)
        results: dict[str, LPValuationResult] = {}
        semaphore = asyncio.Semaphore(self.max_concurrency)

        excluded = self.graph.unresolvable | self.graph.blocked
        if excluded:
            logger.warning(
                f"[queue] Skipping {len(excluded)} tokens on or behind a dependency cycle: "
                f"{sorted(excluded)}"
            )

        for level in self.graph.levels():
            self._fill_mirrors(known)
            token_ids = self.graph.tokens_at_level(level)
            snapshot = dict(known)
            outcomes = await asyncio.gather(
                *(self._valuate(t, level, snapshot, semaphore) for t in token_ids),
                return_exceptions=True,
            )

            resolved = 0
            for token_id, outcome in zip(token_ids, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    logger.warning(f"[queue] Valuation of {token_id} raised {outcome}")
                    continue
                if outcome is None:
                    logger.debug(f"[queue] {token_id} unresolved at level {level}")
                    continue
                results[token_id] = outcome
                known[token_id] = outcome.as_quote()
                resolved += 1

            logger.debug(f"[queue] Level {level}: {resolved}/{len(token_ids)} resolved")

        total = self.graph.stats()["total_pool_tokens"]
        logger.info(f"[queue] Valued {len(results)} of {total} POOL tokens")
        return results
