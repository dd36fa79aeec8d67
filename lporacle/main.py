#!/usr/bin/env python3
"""LP Oracle.

Fetches token prices from multiple sources, merges them, fills gaps through
multi-hop liquidity pricing and values liquidity-pool tokens level by level.

Runs one pricing cycle against a JSON universe file and logs the results.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any

from .src.fetchers import BaseFetcher, get_available_fetchers, get_fetcher
from .src.LiquidityGraph import GraphConfig
from .src.PriceAggregator import AggregationConfig, MergeStrategy
from .src.PricingService import PricingCycleResult, PricingService
from .src.providers import (
    ContractQuoteProvider,
    JsonUniverseProvider,
    QuoteProvider,
    StaticQuoteProvider,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: stxtools=abc123,internal=xyz789

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_STXTOOLS, API_KEY_INTERNAL, etc.

    :returns: Dict mapping source names to API keys.
    """
    api_keys = {}
    prefixes = ["API_KEY_", "APIKEY_"]

    for key, value in os.environ.items():
        for prefix in prefixes:
            if key.startswith(prefix) and value:
                source = key[len(prefix):].lower()
                api_keys[source] = value
                break

    return api_keys


def build_fetchers(
    sources: list[str],
    api_keys: dict[str, str],
    universe: JsonUniverseProvider,
    internal_url: str | None,
    fetch_timeout: float,
) -> dict[str, BaseFetcher]:
    """Create one fetcher per source, in priority order.

    :raises ValueError: If a fetcher cannot be configured.
    """
    fetchers: dict[str, BaseFetcher] = {}
    for source in sources:
        options: dict[str, Any] = {"timeout": fetch_timeout}
        if source == "static":
            options["prices"] = universe.prices
        elif source == "internal" and internal_url:
            options["base_url"] = internal_url
        fetchers[source] = get_fetcher(source, api_key=api_keys.get(source), **options)
    return fetchers


def log_results(result: PricingCycleResult) -> None:
    """Log the outcome of a pricing cycle."""
    for token_id, quote in sorted(result.prices.items()):
        logger.info(
            f"{token_id:<40} ${quote.usd_price:<16.8f} "
            f"conf={quote.confidence:.3f} via {quote.source}"
        )
    for token_id, value in sorted(result.lp_values.items()):
        line = (
            f"{token_id:<40} ${value.usd_price:<16.8f} "
            f"conf={value.confidence:.3f} level={value.level} method={value.method}"
        )
        if value.price_deviation is not None:
            line += f" market_dev={value.price_deviation:.2f}%"
            if value.deviation_flagged:
                line += " FLAGGED"
        logger.info(line)


async def run_once(service: PricingService) -> PricingCycleResult:
    """Run one pricing cycle and release the shared HTTP client."""
    try:
        return await service.run_cycle()
    finally:
        await BaseFetcher.close_shared_client()


def main() -> None:
    """Main entry point for the LP Oracle CLI."""
    available_sources = get_available_fetchers()
    strategies = [s.value for s in MergeStrategy]

    parser = argparse.ArgumentParser(
        description="LP Oracle: Token and liquidity-pool USD price resolution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # Offline run with prices from the universe file
  python -m lporacle.main --universe universe.json --sources static

  # Live sources, preferring the second source on overlap
  python -m lporacle.main --universe universe.json \\
      --sources stxtools,internal --strategy primary_b \\
      --internal-url https://prices.example.com

Environment variables (CLI args take precedence):
  UNIVERSE_FILE, SOURCES, PRICE_STRATEGY, FETCH_TIMEOUT, NUMERAIRE, MAX_HOPS,
  QUOTE_CONCURRENCY, INTERNAL_PRICES_URL, NETWORK,
  API_KEY_STXTOOLS, API_KEY_INTERNAL, etc.
""",
    )

    parser.add_argument(
        "--universe",
        type=str,
        help="JSON file with token records, optional prices and quotes",
        default=os.environ.get("UNIVERSE_FILE"),
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources in priority order. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or "stxtools,internal",
    )

    parser.add_argument(
        "--strategy",
        type=str,
        choices=strategies,
        help="Merge strategy for overlapping source prices (default: average)",
        default=os.environ.get("PRICE_STRATEGY") or "average",
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for each source fetch in seconds (default: 5.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "5.0"),
    )

    parser.add_argument(
        "--numeraire",
        type=str,
        help="Token id anchoring multi-hop pricing (default: .stx)",
        default=os.environ.get("NUMERAIRE") or ".stx",
    )

    parser.add_argument(
        "--max-hops",
        dest="max_hops",
        type=int,
        help="Maximum pools on a multi-hop pricing path (default: 4)",
        default=int(os.environ.get("MAX_HOPS") or "4"),
    )

    parser.add_argument(
        "--quote-concurrency",
        dest="quote_concurrency",
        type=int,
        help="Maximum concurrent LP valuations per level (default: 8)",
        default=int(os.environ.get("QUOTE_CONCURRENCY") or "8"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., stxtools=abc,internal=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "--internal-url",
        dest="internal_url",
        type=str,
        help="Base URL of the internal price API",
        default=os.environ.get("INTERNAL_PRICES_URL"),
    )

    parser.add_argument(
        "--network",
        type=str,
        help="Network or RPC URL for on-chain redemption quotes (optional)",
        default=os.environ.get("NETWORK"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if not args.universe:
        parser.error("--universe (or UNIVERSE_FILE) is required")

    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")

    if args.max_hops < 1:
        parser.error("--max-hops must be at least 1")

    if args.quote_concurrency < 1:
        parser.error("--quote-concurrency must be at least 1")

    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]
    if not sources:
        parser.error("At least one source must be specified")

    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    # Log configuration
    logger.info("=" * 60)
    logger.info("LP Oracle - Token and LP Price Resolution")
    logger.info("=" * 60)
    logger.info(f"Universe:          {args.universe}")
    logger.info(f"Sources:           {', '.join(sources)}")
    logger.info(f"Strategy:          {args.strategy}")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    logger.info(f"Numeraire:         {args.numeraire}")
    logger.info(f"Max Hops:          {args.max_hops}")
    logger.info(f"Quote Concurrency: {args.quote_concurrency}")
    if args.network:
        logger.info(f"Quote Network:     {args.network}")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
    logger.info("=" * 60)

    try:
        universe = JsonUniverseProvider(args.universe)
        fetchers = build_fetchers(
            sources, api_keys, universe, args.internal_url, args.fetch_timeout
        )

        quote_provider: QuoteProvider | None = None
        if args.network:
            quote_provider = ContractQuoteProvider(args.network)
        elif universe.quotes:
            quote_provider = StaticQuoteProvider(universe.quotes)

        service = PricingService(
            metadata_provider=universe,
            reserve_provider=universe,
            fetchers=fetchers,
            quote_provider=quote_provider,
            numeraire_id=args.numeraire,
            aggregation_config=AggregationConfig(
                strategy=args.strategy,
                timeout=args.fetch_timeout,
                sources=tuple(sources),
            ),
            graph_config=GraphConfig(max_hops=args.max_hops),
            quote_concurrency=args.quote_concurrency,
        )
        result = asyncio.run(run_once(service))
        log_results(result)
        logger.info(f"Dependency stats: {service.get_dependency_stats()}")
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
