"""Build configured feed bindings from settings."""

from __future__ import annotations

from functools import partial

from pydantic import SecretStr

from feedprobe.config import Settings
from feedprobe.feeds.base import FeedBinding
from feedprobe.feeds.codex import GraphQLSubscriptionAdapter, latest_pair_subscriptions, pool_event_subscriptions
from feedprobe.feeds.coingecko import RestLookupClient
from feedprobe.feeds.mobula import FastTradeAdapter, PulseStreamAdapter
from feedprobe.ingest.normalize import (
    normalize_codex_events,
    normalize_codex_pairs,
    normalize_fast_trade,
    normalize_pulse,
)
from feedprobe.watchlist import Watchlist

FEEDS = ("mobula-fast-trade", "mobula-pulse", "codex", "codex-pairs")


class MissingCredential(ValueError):
    """Raised when a feed is requested without its API key."""


def _secret(value: SecretStr | None, name: str) -> str:
    if value is None or not value.get_secret_value():
        raise MissingCredential(f"{name} not found in environment")
    return value.get_secret_value()


def build_feed(name: str, settings: Settings, watchlist: Watchlist) -> FeedBinding:
    timeout = settings.connect_timeout_seconds

    if name == "mobula-fast-trade":
        adapter = FastTradeAdapter(
            settings.mobula_fast_trade_url,
            _secret(settings.mobula_api_key, "MOBULA_API_KEY"),
            pools=watchlist.pool_addresses(),
            chain_id=settings.target_network,
            source_id=name,
            connect_timeout=timeout,
        )
        return FeedBinding(adapter, partial(normalize_fast_trade, pool_tokens=watchlist.pool_tokens(), source_id=name))

    if name == "mobula-pulse":
        adapter = PulseStreamAdapter(
            settings.mobula_pulse_url,
            _secret(settings.mobula_api_key, "MOBULA_API_KEY"),
            chain_id=settings.target_network,
            source_id=name,
            connect_timeout=timeout,
        )
        return FeedBinding(adapter, partial(normalize_pulse, source_id=name))

    if name == "codex":
        adapter = GraphQLSubscriptionAdapter(
            settings.codex_url,
            _secret(settings.codex_api_key, "CODEX_API_KEY"),
            pool_event_subscriptions(watchlist.pool_addresses(), settings.codex_network_id),
            source_id=name,
            connect_timeout=timeout,
        )
        return FeedBinding(
            adapter,
            partial(normalize_codex_events, source_id=name, suffix=settings.address_suffix),
        )

    if name == "codex-pairs":
        adapter = GraphQLSubscriptionAdapter(
            settings.codex_url,
            _secret(settings.codex_api_key, "CODEX_API_KEY"),
            latest_pair_subscriptions(settings.codex_network_id),
            source_id=name,
            connect_timeout=timeout,
        )
        return FeedBinding(adapter, partial(normalize_codex_pairs, source_id=name))

    raise ValueError(f"Unknown feed: {name} (expected one of {', '.join(FEEDS)})")


def build_lookup_client(settings: Settings) -> RestLookupClient:
    api_key = settings.coingecko_api_key.get_secret_value() if settings.coingecko_api_key else None
    return RestLookupClient(
        settings.coingecko_api_url,
        api_key,
        platform=settings.coingecko_platform,
        timeout_seconds=settings.lookup_timeout_seconds,
    )
