"""Price-bearing result types.

Every result carries an explicit confidence in [0, 1]. Results are ephemeral:
they are recomputed every cycle and only the latest aggregate matters. An
absent result means "price unavailable", never zero.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field


def _check_price(token_id: str, usd_price: float, confidence: float) -> None:
    if not math.isfinite(usd_price) or usd_price < 0:
        raise ValueError(f"{token_id}: usd_price must be finite and non-negative")
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"{token_id}: confidence must be within [0, 1]")


@dataclass(frozen=True)
class PriceQuote:
    """A resolved USD price for one token.

    :ivar token_id: Token the price belongs to.
    :ivar usd_price: Price in USD per whole token.
    :ivar confidence: Trust in the price, in [0, 1].
    :ivar source: Tag of what produced the price (source name, "graph", ...).
    :ivar computed_at: Unix timestamp of the computation.
    :ivar path: Token ids traversed from the token to the numeraire, if any.
    """

    token_id: str
    usd_price: float
    confidence: float = 1.0
    source: str = "aggregate"
    computed_at: float = field(default_factory=time.time)
    path: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _check_price(self.token_id, self.usd_price, self.confidence)

    @property
    def hops(self) -> int:
        """Number of pool hops used to derive the price."""
        return max(0, len(self.path) - 1)


@dataclass(frozen=True)
class LegValue:
    """Redeemable share of one leg behind an LP valuation.

    :ivar token_id: Leg token id.
    :ivar amount: Redeemable amount in decimal units.
    :ivar usd_value: amount multiplied by the leg's USD price.
    """

    token_id: str
    amount: float
    usd_value: float


@dataclass(frozen=True)
class LPValuationResult:
    """Intrinsic USD valuation of a POOL token.

    :ivar token_id: POOL token id.
    :ivar usd_price: Intrinsic USD value of the valued LP amount.
    :ivar confidence: Minimum of the legs' confidences.
    :ivar reference_ratio: usd_price relative to the reference asset, or None
        when the reference asset has no resolved price.
    :ivar method: "quote" or "reserves".
    :ivar legs: Per-leg redeemable amounts and values.
    :ivar computed_at: Unix timestamp of the computation.
    :ivar level: Dependency level the token was valued at.
    :ivar divergence_percent: Gap between the quote and reserve estimates, when
        both were computed.
    :ivar market_price: Liquidity-graph price of the LP token, when it trades.
    :ivar price_deviation: Percent gap between market_price and usd_price.
    :ivar deviation_flagged: True when price_deviation exceeds the threshold.
    """

    token_id: str
    usd_price: float
    confidence: float
    reference_ratio: float | None = None
    method: str = "reserves"
    legs: tuple[LegValue, ...] = ()
    computed_at: float = field(default_factory=time.time)
    level: int | None = None
    divergence_percent: float | None = None
    market_price: float | None = None
    price_deviation: float | None = None
    deviation_flagged: bool = False

    def __post_init__(self) -> None:
        _check_price(self.token_id, self.usd_price, self.confidence)

    def as_quote(self) -> PriceQuote:
        """Return the valuation as a PriceQuote for use as a leg price."""
        return PriceQuote(
            token_id=self.token_id,
            usd_price=self.usd_price,
            confidence=self.confidence,
            source=f"lp-{self.method}",
            computed_at=self.computed_at,
        )
