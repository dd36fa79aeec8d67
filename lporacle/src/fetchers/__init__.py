"""
Source price fetchers.

This module provides a unified interface for fetching token -> USD price maps
from upstream feeds. Each fetcher is independently fallible.

Usage:
    from lporacle.src.fetchers import get_fetcher, get_available_fetchers

    # Get list of available fetchers
    available = get_available_fetchers()
    # ['internal', 'static', 'stxtools']

    # Create a fetcher instance
    fetcher = get_fetcher("stxtools")
    prices = await fetcher.fetch_prices()

    # Fetchers with extra options
    fetcher = get_fetcher("internal", base_url="https://invest.example.com")
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Import all fetcher implementations to trigger registration
from .internal import InternalApiFetcher
from .static import StaticFetcher
from .stxtools import StxToolsFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "FetcherError",
    "FetcherConfigError",
    "FetcherHTTPError",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "FETCHER_REGISTRY",
    # Fetcher implementations
    "InternalApiFetcher",
    "StaticFetcher",
    "StxToolsFetcher",
]
