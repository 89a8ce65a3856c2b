"""Codex GraphQL subscriptions over the graphql-transport-ws protocol."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from feedprobe.errors import TransportFailure
from feedprobe.feeds.base import WebSocketFeed
from feedprobe.ingest.observation import RawEvent

logger = structlog.get_logger()

POOL_EVENTS_QUERY = """
subscription OnPoolEvents($address: String!, $networkId: Int!) {
  onEventsCreated(address: $address, networkId: $networkId) {
    address
    networkId
    events {
      eventType
      token0Address
      token1Address
      transactionHash
    }
  }
}
"""

LATEST_PAIRS_QUERY = """
subscription OnLatestPairUpdated($networkId: Int!) {
  onLatestPairUpdated(networkId: $networkId) {
    address
    networkId
    liquidAt
    newToken
    token0 { address name symbol }
    token1 { address name symbol }
  }
}
"""


@dataclass(frozen=True)
class Subscription:
    id: str
    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    operation_name: str | None = None

    def message(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": self.query, "variables": self.variables}
        if self.operation_name:
            payload["operationName"] = self.operation_name
        return {"id": self.id, "type": "subscribe", "payload": payload}


def pool_event_subscriptions(pools: list[str], network_id: int) -> list[Subscription]:
    return [
        Subscription(
            id=f"pool-events-{index}",
            query=POOL_EVENTS_QUERY,
            variables={"address": pool, "networkId": network_id},
            operation_name="OnPoolEvents",
        )
        for index, pool in enumerate(pools)
    ]


def latest_pair_subscriptions(network_id: int) -> list[Subscription]:
    return [
        Subscription(
            id=f"new-pairs-{network_id}",
            query=LATEST_PAIRS_QUERY,
            variables={"networkId": network_id},
            operation_name="OnLatestPairUpdated",
        )
    ]


class GraphQLSubscriptionAdapter(WebSocketFeed):
    """``connection_init`` -> ``connection_ack`` -> one ``subscribe`` per query.

    Yields the ``payload`` of every ``next`` message (``{"data": {...}}``).
    """

    subprotocols = ["graphql-transport-ws"]

    def __init__(
        self,
        url: str,
        api_key: str,
        subscriptions: list[Subscription],
        *,
        source_id: str = "codex",
        connect_timeout: float = 10.0,
    ):
        super().__init__(url, source_id=source_id, connect_timeout=connect_timeout)
        if not subscriptions:
            raise ValueError("GraphQLSubscriptionAdapter requires at least one subscription")
        self._api_key = api_key
        self._subscriptions = subscriptions

    def _handshake_messages(self) -> list[dict[str, Any]]:
        return [{"type": "connection_init", "payload": {"Authorization": self._api_key}}]

    def _is_ack(self, message: dict[str, Any]) -> bool:
        return message.get("type") == "connection_ack"

    def _raise_on_rejection(self, message: dict[str, Any]) -> None:
        if message.get("type") == "error":
            raise TransportFailure(self.source_id, f"connection rejected: {message.get('payload')}")

    async def _after_ack(self, ws) -> None:
        for subscription in self._subscriptions:
            await ws.send(json.dumps(subscription.message()))
        logger.info("Codex subscriptions sent", source=self.source_id, subscriptions=len(self._subscriptions))

    async def _unwrap(self, ws, message: dict[str, Any]) -> RawEvent | None:
        message_type = message.get("type")
        if message_type == "next":
            payload = message.get("payload")
            return payload if isinstance(payload, dict) else None
        if message_type == "ping":
            await ws.send(json.dumps({"type": "pong"}))
        elif message_type == "error":
            logger.warning("Codex subscription error", id=message.get("id"), payload=message.get("payload"))
        elif message_type == "complete":
            logger.info("Codex subscription complete", id=message.get("id"))
        return None
