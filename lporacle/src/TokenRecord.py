"""TokenRecord: Metadata for a single token in the pricing universe.

A token is one of three kinds:
    - BASE: directly traded, priced from upstream feeds or the liquidity graph
    - MIRROR: tracks a base token 1:1, never sourced independently
    - POOL: LP token over two reserve legs; a leg may itself be a POOL token

.. code-block:: python

    >>> lp = TokenRecord.from_dict({
    ...     "id": "lp-a-b",
    ...     "decimals": 6,
    ...     "kind": "POOL",
    ...     "legs": [{"token": "a", "reserve": 2000000}, {"token": "b", "reserve": 1000000}],
    ... })
    >>> lp.is_pool
    True
    >>> lp.leg_ids
    ('a', 'b')
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class TokenKind(str, Enum):
    """Kind of token, which decides how its price is obtained."""

    BASE = "BASE"
    MIRROR = "MIRROR"
    POOL = "POOL"


@dataclass(frozen=True)
class PoolLeg:
    """One reserve leg of a POOL token.

    :ivar token_id: Id of the token held in reserve.
    :ivar reserve: Atomic (smallest-unit) reserve amount.
    """

    token_id: str
    reserve: int


@dataclass(frozen=True)
class TokenRecord:
    """Immutable token metadata.

    :ivar token_id: Unique token id.
    :ivar decimals: Number of decimals of the atomic unit.
    :ivar kind: BASE, MIRROR or POOL.
    :ivar base_id: For MIRROR tokens, the id of the tracked base token.
    :ivar legs: For POOL tokens, exactly two reserve legs.
    :ivar symbol: Optional display symbol.
    :ivar updated_at: Unix timestamp of the reserve observation (POOL only).
    """

    token_id: str
    decimals: int
    kind: TokenKind = TokenKind.BASE
    base_id: str | None = None
    legs: tuple[PoolLeg, PoolLeg] | None = None
    symbol: str = ""
    updated_at: float | None = None

    def __post_init__(self) -> None:
        if self.decimals < 0:
            raise ValueError(f"{self.token_id}: decimals must be non-negative")
        if self.kind is TokenKind.MIRROR and not self.base_id:
            raise ValueError(f"{self.token_id}: MIRROR token requires base_id")
        if self.kind is TokenKind.POOL and (self.legs is None or len(self.legs) != 2):
            raise ValueError(f"{self.token_id}: POOL token requires exactly two legs")

    @property
    def is_pool(self) -> bool:
        """Check if this token is an LP token."""
        return self.kind is TokenKind.POOL

    @property
    def is_mirror(self) -> bool:
        """Check if this token mirrors a base token."""
        return self.kind is TokenKind.MIRROR

    @property
    def leg_ids(self) -> tuple[str, ...]:
        """Return the leg token ids, empty for non-POOL tokens."""
        if self.legs is None:
            return ()
        return tuple(leg.token_id for leg in self.legs)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenRecord:
        """Build a record from its JSON representation.

        :param data: Dict with ``id``, ``decimals``, ``kind`` and, depending on
            kind, ``base`` or ``legs`` (list of ``{"token", "reserve"}``).
        :returns: New TokenRecord instance.
        :raises ValueError: If required fields are missing or malformed.
        """
        try:
            token_id = str(data["id"])
            decimals = int(data["decimals"])
            kind = TokenKind(str(data.get("kind", "BASE")).upper())
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed token record {data!r}: {e}") from e

        legs = None
        if kind is TokenKind.POOL:
            raw_legs = data.get("legs") or []
            if len(raw_legs) != 2:
                raise ValueError(f"{token_id}: POOL token requires exactly two legs")
            legs = (
                PoolLeg(str(raw_legs[0]["token"]), int(raw_legs[0]["reserve"])),
                PoolLeg(str(raw_legs[1]["token"]), int(raw_legs[1]["reserve"])),
            )

        updated_at = data.get("updated_at")
        return cls(
            token_id=token_id,
            decimals=decimals,
            kind=kind,
            base_id=data.get("base"),
            legs=legs,
            symbol=str(data.get("symbol", "")),
            updated_at=float(updated_at) if updated_at is not None else None,
        )
