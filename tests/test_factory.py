"""Tests for settings and feed construction."""

import pytest
from conftest import POOL_A, TOKEN_A

from feedprobe.config import Settings
from feedprobe.feeds.codex import GraphQLSubscriptionAdapter
from feedprobe.feeds.factory import FEEDS, MissingCredential, build_feed, build_lookup_client
from feedprobe.feeds.mobula import FastTradeAdapter, PulseStreamAdapter
from feedprobe.ingest.observation import EntityKind
from feedprobe.watchlist import PoolEntry, Watchlist


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setenv("MOBULA_API_KEY", "mobula-key")
    monkeypatch.setenv("CODEX_API_KEY", "codex-key")
    monkeypatch.delenv("COINGECKO_API_KEY", raising=False)
    return Settings(_env_file=None)


@pytest.fixture
def watchlist():
    return Watchlist(pools=[PoolEntry(pool_address=POOL_A, token_address=TOKEN_A, symbol="BL")])


class TestSettings:
    """Tests for Settings."""

    def test_probe_config_defaults(self, monkeypatch):
        monkeypatch.delenv("FEEDPROBE_WINDOW_SECONDS", raising=False)
        config = Settings(_env_file=None).probe_config()

        assert config.threshold_percent == 85.0
        assert config.target_network == "evm:56"
        assert config.address_suffix == "4444"
        assert config.candidate == "mobula-fast-trade"
        assert config.reference == "codex"

    def test_overrides_ignore_none(self):
        config = Settings(_env_file=None).probe_config(window_seconds=5.0, threshold_percent=None)

        assert config.window_seconds == 5.0
        assert config.threshold_percent == 85.0

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("FEEDPROBE_THRESHOLD_PERCENT", "90")
        monkeypatch.setenv("FEEDPROBE_PRIMARY_KIND", "token")
        monkeypatch.setenv("CODEX_API_KEY", "from-env")

        loaded = Settings(_env_file=None)

        assert loaded.threshold_percent == 90.0
        assert loaded.primary_kind is EntityKind.TOKEN
        assert loaded.codex_api_key.get_secret_value() == "from-env"


class TestBuildFeed:
    """Tests for build_feed()."""

    def test_builds_every_feed(self, settings, watchlist):
        expected = {
            "mobula-fast-trade": FastTradeAdapter,
            "mobula-pulse": PulseStreamAdapter,
            "codex": GraphQLSubscriptionAdapter,
            "codex-pairs": GraphQLSubscriptionAdapter,
        }
        for name in FEEDS:
            binding = build_feed(name, settings, watchlist)
            assert isinstance(binding.adapter, expected[name])
            assert binding.source_id == name

    def test_normalizer_is_bound_to_source(self, settings, watchlist):
        binding = build_feed("mobula-fast-trade", settings, watchlist)

        result = binding.normalizer({"hash": "0x1", "pair": POOL_A, "blockchain": "evm:56", "type": "sell"})

        assert {obs.source_id for obs in result.observations} == {"mobula-fast-trade"}

    def test_missing_key(self, settings, watchlist):
        settings.codex_api_key = None

        with pytest.raises(MissingCredential, match="CODEX_API_KEY"):
            build_feed("codex", settings, watchlist)

    def test_unknown_feed(self, settings, watchlist):
        with pytest.raises(ValueError, match="Unknown feed"):
            build_feed("dexscreener", settings, watchlist)

    def test_lookup_client_without_key(self, settings):
        client = build_lookup_client(settings)

        assert client.platform == "binance-smart-chain"
        assert "x-cg-pro-api-key" not in client._client.headers
