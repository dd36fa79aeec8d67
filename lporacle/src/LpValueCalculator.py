"""LpValueCalculator: Intrinsic USD value of POOL tokens.

Two methods:
    1. Reserve ratio: total pool USD value divided by an estimated LP supply
       of sqrt(reserveA * reserveB) / 10**lpDecimals (constant-product
       approximation).
    2. Quote: redeem one whole LP token through the quote provider and value
       the exact returned leg amounts. Preferred whenever it succeeds, since
       it reflects contract-enforced redemption curves.

Preconditions for either method: both legs have metadata, strictly positive
reserves and a resolved price. A missing precondition yields no result,
never a partial or guessed value. A POOL result is never more confident
than its least confident leg.

.. code-block:: python

    >>> calc = LpValueCalculator(tokens)
    >>> result = await calc.valuate(lp_token, {"a": quote_a, "b": quote_b})
    >>> round(result.usd_price, 4)
    4.9497
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import replace
from typing import Iterable, Mapping

from .errors import MissingDependency, PricingError, TokenNotFound, ZeroReserve
from .PriceQuote import LegValue, LPValuationResult, PriceQuote
from .providers import QuoteProvider, RedemptionQuote
from .TokenRecord import TokenRecord

logger = logging.getLogger(__name__)

METHOD_RESERVES = "reserves"
METHOD_QUOTE = "quote"


class LpValueCalculator:
    """Computes intrinsic values of POOL tokens from resolved leg prices.

    :ivar tokens: Token id -> metadata for the whole universe.
    :ivar quote_provider: Optional redemption quote capability.
    :ivar quote_timeout: Seconds to wait for a single quote.
    :ivar reference_token_id: Asset the reference ratio is expressed in.
    :ivar divergence_warn_percent: Quote vs reserve gap that gets flagged.
    """

    def __init__(
        self,
        tokens: Mapping[str, TokenRecord] | Iterable[TokenRecord],
        quote_provider: QuoteProvider | None = None,
        quote_timeout: float = 5.0,
        reference_token_id: str | None = None,
        divergence_warn_percent: float = 5.0,
    ) -> None:
        if isinstance(tokens, Mapping):
            self.tokens = dict(tokens)
        else:
            self.tokens = {token.token_id: token for token in tokens}
        self.quote_provider = quote_provider
        self.quote_timeout = quote_timeout
        self.reference_token_id = reference_token_id
        self.divergence_warn_percent = divergence_warn_percent

    def _legs(
        self, pool: TokenRecord, known: Mapping[str, PriceQuote]
    ) -> list[tuple[TokenRecord, int, PriceQuote]]:
        """Check preconditions and return (metadata, reserve, price) per leg.

        :raises TokenNotFound: If a leg has no metadata.
        :raises ZeroReserve: If a leg reserve is not strictly positive.
        :raises MissingDependency: If a leg has no resolved price.
        """
        if pool.legs is None:
            raise TokenNotFound(pool.token_id)

        legs = []
        missing = []
        for leg in pool.legs:
            meta = self.tokens.get(leg.token_id)
            if meta is None:
                raise TokenNotFound(leg.token_id)
            if leg.reserve <= 0:
                raise ZeroReserve(pool.token_id)
            price = known.get(leg.token_id)
            if price is None:
                missing.append(leg.token_id)
                continue
            legs.append((meta, leg.reserve, price))

        if missing:
            raise MissingDependency(pool.token_id, missing)
        return legs

    def _reference_ratio(self, usd_price: float, known: Mapping[str, PriceQuote]) -> float | None:
        if self.reference_token_id is None:
            return None
        reference = known.get(self.reference_token_id)
        if reference is None or reference.usd_price <= 0:
            return None
        return usd_price / reference.usd_price

    def estimate_by_reserves(
        self,
        pool: TokenRecord,
        known: Mapping[str, PriceQuote],
        amount: float = 1.0,
    ) -> LPValuationResult:
        """Value a POOL token by the reserve-ratio method.

        :param pool: POOL token.
        :param known: Resolved leg prices.
        :param amount: LP amount being valued, in whole tokens.
        :raises PricingError: If a precondition is not met.
        """
        legs = self._legs(pool, known)
        (_, reserve_a, _), (_, reserve_b, _) = legs

        supply = math.sqrt(reserve_a) * math.sqrt(reserve_b) / 10 ** pool.decimals
        if not math.isfinite(supply) or supply <= 0:
            raise ZeroReserve(pool.token_id)

        leg_values = []
        for meta, reserve, price in legs:
            share = reserve / 10 ** meta.decimals / supply * amount
            leg_values.append(LegValue(meta.token_id, share, share * price.usd_price))

        return self._result(pool, legs, leg_values, known, METHOD_RESERVES)

    def value_from_quote(
        self,
        pool: TokenRecord,
        known: Mapping[str, PriceQuote],
        quote: RedemptionQuote,
        amount: float = 1.0,
    ) -> LPValuationResult:
        """Value a POOL token from a one-token redemption quote.

        :param pool: POOL token.
        :param known: Resolved leg prices.
        :param quote: Atomic leg amounts redeemable for one whole LP token.
        :param amount: LP amount being valued, in whole tokens.
        :raises PricingError: If a precondition is not met.
        """
        legs = self._legs(pool, known)
        leg_values = []
        for (meta, _, price), redeemable in zip(legs, (quote.amount_a, quote.amount_b)):
            share = redeemable / 10 ** meta.decimals * amount
            leg_values.append(LegValue(meta.token_id, share, share * price.usd_price))

        return self._result(pool, legs, leg_values, known, METHOD_QUOTE)

    def _result(
        self,
        pool: TokenRecord,
        legs: list[tuple[TokenRecord, int, PriceQuote]],
        leg_values: list[LegValue],
        known: Mapping[str, PriceQuote],
        method: str,
    ) -> LPValuationResult:
        usd_price = sum(leg.usd_value for leg in leg_values)
        return LPValuationResult(
            token_id=pool.token_id,
            usd_price=usd_price,
            confidence=min(price.confidence for _, _, price in legs),
            reference_ratio=self._reference_ratio(usd_price, known),
            method=method,
            legs=tuple(leg_values),
        )

    async def _fetch_quote(self, pool: TokenRecord) -> RedemptionQuote | None:
        if self.quote_provider is None:
            return None
        try:
            return await asyncio.wait_for(
                self.quote_provider.quote(pool, 10 ** pool.decimals),
                timeout=self.quote_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[lp] Quote timeout for {pool.token_id}, using reserves")
        except Exception as e:
            logger.warning(f"[lp] Quote failed for {pool.token_id}: {e}, using reserves")
        return None

    async def valuate(
        self,
        pool: TokenRecord,
        known: Mapping[str, PriceQuote],
        amount: float = 1.0,
    ) -> LPValuationResult | None:
        """Value a POOL token, preferring the quote method.

        When both methods produce a value, their gap is recorded as
        divergence_percent and logged for review if it exceeds
        divergence_warn_percent; the quote value stays authoritative.

        :param pool: POOL token.
        :param known: Resolved prices, including both legs.
        :param amount: LP amount being valued, in whole tokens.
        :returns: LPValuationResult, or None if any precondition is missing.
        """
        try:
            estimate = self.estimate_by_reserves(pool, known, amount)
        except PricingError as e:
            logger.debug(f"[lp] {pool.token_id} not valued: {e}")
            return None

        quote = await self._fetch_quote(pool)
        if quote is None:
            return estimate

        try:
            result = self.value_from_quote(pool, known, quote, amount)
        except PricingError as e:
            logger.debug(f"[lp] Quote valuation of {pool.token_id} failed: {e}")
            return estimate

        divergence = None
        if estimate.usd_price > 0:
            divergence = abs(result.usd_price - estimate.usd_price) / estimate.usd_price * 100
            if divergence > self.divergence_warn_percent:
                logger.warning(
                    f"[lp] {pool.token_id}: quote ${result.usd_price:.6f} vs reserves "
                    f"${estimate.usd_price:.6f} diverge by {divergence:.2f}%"
                )

        return replace(result, divergence_percent=divergence)
