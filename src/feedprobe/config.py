"""Configuration management using Pydantic Settings."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from feedprobe.ingest.observation import EntityKind


@dataclass(frozen=True)
class ProbeConfig:
    """Run-level constants consumed by the collection and scoring core."""

    target_network: str = "evm:56"
    address_suffix: str = "4444"
    window_seconds: float = 30.0
    threshold_percent: float = 85.0
    candidate: str = "mobula-fast-trade"
    reference: str = "codex"
    primary_kind: EntityKind = EntityKind.TRANSACTION
    connect_timeout_seconds: float = 10.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FEEDPROBE_",
        extra="ignore",
    )

    # API keys (unprefixed, shared with other tooling)
    mobula_api_key: SecretStr | None = Field(default=None, validation_alias=AliasChoices("MOBULA_API_KEY"))
    codex_api_key: SecretStr | None = Field(default=None, validation_alias=AliasChoices("CODEX_API_KEY"))
    coingecko_api_key: SecretStr | None = Field(default=None, validation_alias=AliasChoices("COINGECKO_API_KEY"))

    # Endpoints
    mobula_fast_trade_url: str = "wss://api.mobula.io"
    mobula_pulse_url: str = "wss://pulse-v2-api.mobula.io"
    codex_url: str = "wss://graph.codex.io/graphql"
    coingecko_api_url: str = "https://pro-api.coingecko.com/api/v3"

    # Tracked population
    target_network: str = "evm:56"
    codex_network_id: int = 56
    coingecko_platform: str = "binance-smart-chain"
    address_suffix: str = "4444"
    watchlist_path: str = "pools.yaml"

    # Scoring
    window_seconds: float = 30.0
    threshold_percent: float = 85.0
    candidate_source: str = "mobula-fast-trade"
    reference_source: str = "codex"
    primary_kind: EntityKind = EntityKind.TRANSACTION

    # Timeouts and pacing
    connect_timeout_seconds: float = 10.0
    lookup_timeout_seconds: float = 20.0
    lookup_delay_seconds: float = 1.0
    indexing_delay_seconds: float = 30.0

    def probe_config(self, **overrides) -> ProbeConfig:
        values = {
            "target_network": self.target_network,
            "address_suffix": self.address_suffix,
            "window_seconds": self.window_seconds,
            "threshold_percent": self.threshold_percent,
            "candidate": self.candidate_source,
            "reference": self.reference_source,
            "primary_kind": self.primary_kind,
            "connect_timeout_seconds": self.connect_timeout_seconds,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return ProbeConfig(**values)


settings = Settings()
