"""
LP Oracle - Token and LP Price Resolution Module

This module resolves USD prices for base, mirror and liquidity-pool tokens:
- PriceAggregator: Multi-source merging with numeraire aliasing and mirrors
- LiquidityGraph: Multi-hop pricing over pool reserves
- LpDependencyGraph: Topological levels of nested LP tokens
- LpValueCalculator: Intrinsic LP value from reserves or redemption quotes
- LevelProcessingQueue: Level-ordered LP valuation
- SourceManager: Per-source health tracking with backoff
- PricingService: Snapshot owner and pipeline orchestrator
- fetchers: Modular source price fetchers
"""

from .errors import (
    ConfigError,
    CycleDetected,
    MissingDependency,
    PathNotFound,
    PricingError,
    SourceUnavailable,
    TokenNotFound,
    ZeroReserve,
)
from .LevelProcessingQueue import LevelProcessingQueue
from .LiquidityGraph import GraphConfig, LiquidityGraph, PoolReserves
from .LpDependencyGraph import LpDependencyGraph
from .LpValueCalculator import LpValueCalculator
from .PriceAggregator import (
    AggregationConfig,
    AggregationResult,
    MergeStrategy,
    PriceAggregator,
    aggregate,
)
from .PriceQuote import LPValuationResult, PriceQuote
from .PricingService import PricingCycleResult, PricingService
from .SourceManager import SourceManager, SourceStatus
from .TokenRecord import PoolLeg, TokenKind, TokenRecord

__all__ = [
    "AggregationConfig",
    "AggregationResult",
    "ConfigError",
    "CycleDetected",
    "GraphConfig",
    "LevelProcessingQueue",
    "LiquidityGraph",
    "LpDependencyGraph",
    "LpValueCalculator",
    "LPValuationResult",
    "MergeStrategy",
    "MissingDependency",
    "PathNotFound",
    "PoolLeg",
    "PoolReserves",
    "PriceAggregator",
    "PriceQuote",
    "PricingCycleResult",
    "PricingError",
    "PricingService",
    "SourceManager",
    "SourceStatus",
    "SourceUnavailable",
    "TokenKind",
    "TokenNotFound",
    "TokenRecord",
    "ZeroReserve",
    "aggregate",
]
