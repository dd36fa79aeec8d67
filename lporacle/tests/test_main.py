"""Unit tests for CLI helpers."""

import json

from lporacle.main import build_fetchers, parse_api_keys, parse_env_api_keys
from lporacle.src.fetchers import InternalApiFetcher, StaticFetcher, StxToolsFetcher
from lporacle.src.providers import JsonUniverseProvider


class TestParseApiKeys:
    """Test API key parsing."""

    def test_cli_string(self) -> None:
        """Comma-separated source=key pairs are parsed."""
        assert parse_api_keys("StxTools = abc, internal=x=y,bogus") == {
            "stxtools": "abc",
            "internal": "x=y",
        }

    def test_empty(self) -> None:
        """Empty input gives no keys."""
        assert parse_api_keys(None) == {}
        assert parse_api_keys("") == {}

    def test_env(self, monkeypatch) -> None:
        """API_KEY_<SOURCE> variables are picked up."""
        monkeypatch.setenv("API_KEY_INTERNAL", "secret")
        monkeypatch.setenv("APIKEY_STXTOOLS", "other")
        keys = parse_env_api_keys()
        assert keys["internal"] == "secret"
        assert keys["stxtools"] == "other"


class TestBuildFetchers:
    """Test fetcher construction from CLI settings."""

    def test_build(self, tmp_path) -> None:
        """Fetchers are built in source order with their options."""
        path = tmp_path / "universe.json"
        path.write_text(json.dumps({"tokens": [{"id": ".stx", "decimals": 6}], "prices": {".stx": 2}}))
        universe = JsonUniverseProvider(path)

        fetchers = build_fetchers(
            ["internal", "static", "stxtools"],
            {"internal": "key"},
            universe,
            "https://prices.example.com",
            3.0,
        )
        assert list(fetchers) == ["internal", "static", "stxtools"]
        assert isinstance(fetchers["internal"], InternalApiFetcher)
        assert fetchers["internal"].base_url == "https://prices.example.com"
        assert fetchers["internal"].api_key == "key"
        assert isinstance(fetchers["static"], StaticFetcher)
        assert fetchers["static"].prices == {".stx": 2.0}
        assert isinstance(fetchers["stxtools"], StxToolsFetcher)
        assert fetchers["stxtools"].timeout == 3.0
