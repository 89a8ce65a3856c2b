"""Mobula websocket feeds: Pulse v2 token views and fast-trade pool trades."""

from __future__ import annotations

from typing import Any

import structlog

from feedprobe.errors import TransportFailure
from feedprobe.feeds.base import WebSocketFeed
from feedprobe.ingest.observation import RawEvent

logger = structlog.get_logger()

PULSE_POOL_TYPES = ["pancakeswap-v2", "pancakeswap-v3", "uniswap-v2"]


def default_pulse_views(chain_id: str) -> list[dict[str, Any]]:
    return [
        {
            "name": "bsc-tokens",
            "chainId": [chain_id],
            "poolTypes": PULSE_POOL_TYPES,
            "sortBy": "volume_1h",
            "sortOrder": "desc",
            "limit": 100,
            "filters": {"volume_1h": {"gte": 10}},
        },
        {
            "name": "bsc-new-tokens",
            "chainId": [chain_id],
            "poolTypes": PULSE_POOL_TYPES,
            "sortBy": "created_at",
            "sortOrder": "desc",
            "limit": 50,
        },
    ]


class _MobulaFeed(WebSocketFeed):
    def __init__(self, url: str, api_key: str, *, source_id: str, connect_timeout: float = 10.0):
        super().__init__(url, source_id=source_id, connect_timeout=connect_timeout)
        self._api_key = api_key

    def _raise_on_rejection(self, message: dict[str, Any]) -> None:
        if message.get("error"):
            raise TransportFailure(self.source_id, f"subscription rejected: {message['error']}")


class PulseStreamAdapter(_MobulaFeed):
    """Pulse v2 token views. The ``init`` bulk snapshot acknowledges the subscription."""

    ack_is_event = True

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        chain_id: str = "evm:56",
        views: list[dict[str, Any]] | None = None,
        source_id: str = "mobula-pulse",
        connect_timeout: float = 10.0,
    ):
        super().__init__(url, api_key, source_id=source_id, connect_timeout=connect_timeout)
        self._views = views or default_pulse_views(chain_id)

    def _handshake_messages(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "pulse-v2",
                "authorization": self._api_key,
                "payload": {"assetMode": True, "views": self._views},
            }
        ]

    def _is_ack(self, message: dict[str, Any]) -> bool:
        return message.get("type") == "init"

    async def _unwrap(self, ws, message: dict[str, Any]) -> RawEvent | None:
        if message.get("type") == "sync":
            logger.debug("Pulse sync received", source=self.source_id)
            return None
        return message


class FastTradeAdapter(_MobulaFeed):
    """Fast-trade stream for a fixed set of pool addresses."""

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        pools: list[str],
        chain_id: str = "evm:56",
        source_id: str = "mobula-fast-trade",
        connect_timeout: float = 10.0,
    ):
        super().__init__(url, api_key, source_id=source_id, connect_timeout=connect_timeout)
        if not pools:
            raise ValueError("FastTradeAdapter requires at least one pool address")
        self._pools = pools
        self._chain_id = chain_id

    def _handshake_messages(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "fast-trade",
                "authorization": self._api_key,
                "payload": {
                    "assetMode": False,
                    "items": [{"blockchain": self._chain_id, "address": pool} for pool in self._pools],
                },
            }
        ]

    def _is_ack(self, message: dict[str, Any]) -> bool:
        return message.get("status") == "success"

    async def _unwrap(self, ws, message: dict[str, Any]) -> RawEvent | None:
        if message.get("error"):
            logger.warning("Fast-trade server error", source=self.source_id, error=message.get("error"))
            return None
        if message.get("status"):
            return None
        return message
