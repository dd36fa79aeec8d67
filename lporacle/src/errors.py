"""Error taxonomy for the price-resolution pipeline.

Every error below except ConfigError is recoverable at the batch level:
components raise them internally and the caller degrades to a smaller,
still-valid result set. ConfigError is raised for malformed startup
configuration and is the only fatal condition.
"""

from __future__ import annotations


class PricingError(Exception):
    """Base exception for pricing errors."""

    pass


class ConfigError(PricingError, ValueError):
    """Raised when startup configuration is malformed."""

    pass


class SourceUnavailable(PricingError):
    """An upstream price feed failed or timed out.

    :ivar source: Name of the failing source.
    """

    def __init__(self, source: str, reason: str = "") -> None:
        self.source = source
        message = f"Source '{source}' unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class TokenNotFound(PricingError):
    """No metadata exists for the requested token id."""

    def __init__(self, token_id: str) -> None:
        self.token_id = token_id
        super().__init__(f"Token not found: {token_id}")


class PathNotFound(PricingError):
    """No liquidity route to the numeraire within the hop bound.

    :ivar token_id: Token that could not be priced.
    :ivar numeraire_id: Anchor token the search targeted.
    :ivar max_hops: Hop bound that was attempted.
    """

    def __init__(self, token_id: str, numeraire_id: str, max_hops: int) -> None:
        self.token_id = token_id
        self.numeraire_id = numeraire_id
        self.max_hops = max_hops
        super().__init__(
            f"No path from {token_id} to {numeraire_id} within {max_hops} hops"
        )


class MissingDependency(PricingError):
    """An LP token's leg price is unresolved at valuation time."""

    def __init__(self, token_id: str, missing: list[str]) -> None:
        self.token_id = token_id
        self.missing = list(missing)
        super().__init__(f"{token_id}: unresolved dependencies {self.missing}")


class CycleDetected(PricingError):
    """The LP dependency graph contains a cycle.

    :ivar members: Token ids that form the cycle, in traversal order.
    """

    def __init__(self, members: list[str]) -> None:
        self.members = list(members)
        super().__init__(f"Dependency cycle: {' -> '.join(self.members)}")


class ZeroReserve(PricingError):
    """A pool leg has a zero (or negative) reserve."""

    def __init__(self, pool_id: str) -> None:
        self.pool_id = pool_id
        super().__init__(f"Pool {pool_id} has a zero reserve")
