"""Collaborator interfaces at the boundary of the pricing pipeline.

- TokenMetadataProvider: list_tokens() -> token universe
- PoolReserveProvider: list_pools() -> current pool reserve observations
- QuoteProvider: quote(pool_token, unit_amount) -> exact redeemable amounts

Implementations here are thin: a static/in-memory universe, a JSON universe
file, and a web3-backed redemption quote provider that calls each pool
contract's quote function.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from web3 import Web3

from .errors import ConfigError
from .LiquidityGraph import PoolReserves, pools_from_tokens
from .TokenRecord import TokenRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionQuote:
    """Atomic amounts of each leg redeemable for the quoted LP amount."""

    amount_a: int
    amount_b: int


class TokenMetadataProvider(ABC):
    """Supplies the token universe."""

    @abstractmethod
    def list_tokens(self) -> list[TokenRecord]:
        """Return every known token record."""
        pass


class PoolReserveProvider(ABC):
    """Supplies current atomic reserves and leg decimals per pool."""

    @abstractmethod
    def list_pools(self) -> list[PoolReserves]:
        """Return the latest reserve observation of every pool."""
        pass


class QuoteProvider(ABC):
    """Optional redemption quote capability for POOL tokens."""

    @abstractmethod
    async def quote(self, pool_token: TokenRecord, unit_amount: int) -> RedemptionQuote | None:
        """Quote the leg amounts redeemable for unit_amount atomic LP tokens.

        :param pool_token: POOL token to redeem.
        :param unit_amount: Atomic LP amount.
        :returns: RedemptionQuote, or None if the pool cannot be quoted.
        """
        pass


class StaticUniverseProvider(TokenMetadataProvider, PoolReserveProvider):
    """In-memory token universe; pool reserves derive from POOL records.

    :ivar tokens: Token records.
    :ivar pools: Explicit pool observations; derived from tokens if None.
    """

    def __init__(
        self,
        tokens: Iterable[TokenRecord],
        pools: Iterable[PoolReserves] | None = None,
    ) -> None:
        self.tokens = list(tokens)
        self.pools = list(pools) if pools is not None else None

    def list_tokens(self) -> list[TokenRecord]:
        return list(self.tokens)

    def list_pools(self) -> list[PoolReserves]:
        if self.pools is not None:
            return list(self.pools)
        return pools_from_tokens(self.tokens)


class StaticQuoteProvider(QuoteProvider):
    """Serves fixed per-unit quotes keyed by POOL token id."""

    def __init__(self, quotes: dict[str, RedemptionQuote]) -> None:
        self.quotes = dict(quotes)

    async def quote(self, pool_token: TokenRecord, unit_amount: int) -> RedemptionQuote | None:
        return self.quotes.get(pool_token.token_id)


class JsonUniverseProvider(StaticUniverseProvider):
    """Token universe loaded from a JSON file.

    File layout::

        {
          "tokens": [{"id", "decimals", "kind", "base"?, "legs"?, "updated_at"?}],
          "prices": {"<token id>": <usd price>},
          "quotes": {"<pool id>": [amount_a, amount_b]}
        }

    :ivar prices: Optional offline prices, served through the static fetcher.
    :ivar quotes: Optional per-unit redemption quotes.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        try:
            with open(self.path, "r") as file:
                data: dict[str, Any] = json.load(file)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read universe file {self.path}: {e}") from e

        try:
            tokens = [TokenRecord.from_dict(row) for row in data.get("tokens", [])]
            prices = {str(k): float(v) for k, v in (data.get("prices") or {}).items()}
            quotes = {
                str(k): RedemptionQuote(int(v[0]), int(v[1]))
                for k, v in (data.get("quotes") or {}).items()
            }
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Malformed universe file {self.path}: {e}") from e

        super().__init__(tokens)
        self.prices: dict[str, float] = prices
        self.quotes: dict[str, RedemptionQuote] = quotes
        logger.info(f"Loaded {len(tokens)} tokens from {self.path}")


# Minimal ABI of the pool quote function: quote(uint256) -> (uint256, uint256)
POOL_QUOTE_ABI: list[dict] = [
    {
        "type": "function",
        "name": "quoteRemoveLiquidity",
        "stateMutability": "view",
        "inputs": [{"name": "amount", "type": "uint256"}],
        "outputs": [
            {"name": "amountA", "type": "uint256"},
            {"name": "amountB", "type": "uint256"},
        ],
    }
]

NETWORKS: dict[str, str] = {
    "mainnet": "https://eth.llamarpc.com",
    "localnet": "http://localhost:8545",
}


class ContractQuoteProvider(QuoteProvider):
    """Redemption quotes read from pool contracts over JSON-RPC.

    :ivar w3: Web3 instance.
    :ivar pool_addresses: Optional POOL token id -> contract address map;
        the token id itself is used as the address when absent.
    """

    def __init__(
        self,
        network_name: str = "localnet",
        pool_addresses: dict[str, str] | None = None,
        w3: Web3 | None = None,
    ) -> None:
        """Initialize the provider.

        :param network_name: Network name or RPC URL; RPC_URL env var overrides.
        :param pool_addresses: Optional POOL token id -> contract address map.
        :param w3: Preconfigured Web3 instance (overrides network_name).
        """
        if w3 is None:
            rpc_url = os.environ.get("RPC_URL") or NETWORKS.get(network_name, network_name)
            w3 = Web3(Web3.HTTPProvider(rpc_url))
        self.w3 = w3
        self.pool_addresses = dict(pool_addresses or {})

    def _call_quote(self, pool_token: TokenRecord, unit_amount: int) -> RedemptionQuote:
        address = self.pool_addresses.get(pool_token.token_id, pool_token.token_id)
        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(address), abi=POOL_QUOTE_ABI
        )
        amount_a, amount_b = contract.functions.quoteRemoveLiquidity(unit_amount).call()
        return RedemptionQuote(int(amount_a), int(amount_b))

    async def quote(self, pool_token: TokenRecord, unit_amount: int) -> RedemptionQuote | None:
        """Call the pool contract's quote function off the event loop."""
        return await asyncio.to_thread(self._call_quote, pool_token, unit_amount)
