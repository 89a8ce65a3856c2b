"""Per-feed translation of raw messages into observations.

Every function here is pure and never raises: payloads missing an address or a
transaction hash are counted in ``Normalized.skipped`` and dropped.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from feedprobe.errors import NormalizationSkip
from feedprobe.ingest.observation import EntityKind, Normalized, Observation, RawEvent, canonical_network

Normalizer = Callable[[RawEvent], Normalized]

PULSE_TOKEN_FIELDS = ("symbol", "name", "price", "volume_1h", "volume_24h", "trades_1h", "createdAt")


def _address(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _pick(source: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    return {name: source[name] for name in fields if source.get(name) is not None}


def _pulse_token(token: Any, *, source_id: str, event: str) -> Observation:
    if not isinstance(token, Mapping):
        raise NormalizationSkip("pulse token is not an object")
    address = _address(token.get("address"))
    if not address:
        raise NormalizationSkip("pulse token without an address")
    measures = _pick(token, PULSE_TOKEN_FIELDS)
    measures["event"] = event
    return Observation(
        source_id=source_id,
        entity_kind=EntityKind.TOKEN,
        identity_key=address,
        network_key=canonical_network(token.get("chainId")),
        measures=measures,
    )


def normalize_pulse(raw: RawEvent, *, source_id: str = "mobula-pulse") -> Normalized:
    """Normalize Mobula Pulse ``init`` snapshots and ``new-token``/``update-token`` updates."""
    if not isinstance(raw, Mapping):
        return Normalized(skipped=1)

    message_type = raw.get("type")
    payload = raw.get("payload")
    tokens: list[tuple[Any, str]] = []

    skipped = 0
    if message_type == "init" and isinstance(payload, Mapping):
        for view in payload.values():
            data = view.get("data") if isinstance(view, Mapping) else None
            if data is None:
                continue
            if not isinstance(data, list):
                skipped += 1
                continue
            tokens.extend((token, "init") for token in data)
    elif message_type in ("new-token", "update-token") and isinstance(payload, Mapping):
        event = "new" if message_type == "new-token" else "update"
        tokens.append((payload.get("token"), event))
    else:
        # sync / heartbeat frames carry no entities
        return Normalized()

    observations: list[Observation] = []
    for token, event in tokens:
        try:
            observations.append(_pulse_token(token, source_id=source_id, event=event))
        except NormalizationSkip:
            skipped += 1
    return Normalized(observations=observations, skipped=skipped)


def normalize_fast_trade(
    raw: RawEvent,
    *,
    pool_tokens: Mapping[str, str],
    source_id: str = "mobula-fast-trade",
) -> Normalized:
    """Normalize a Mobula fast-trade message using the watched pool -> token map."""
    if not isinstance(raw, Mapping):
        return Normalized(skipped=1)
    if raw.get("status") or raw.get("error"):
        return Normalized()

    tx_hash = _address(raw.get("hash"))
    pool = _address(raw.get("pair"))
    network = canonical_network(raw.get("blockchain"))
    if not tx_hash or not pool or not network:
        return Normalized(skipped=1)

    token = pool_tokens.get(pool)
    if not token:
        return Normalized(skipped=1)

    measures: dict[str, Any] = {"pool": pool}
    side = raw.get("type")
    if side in ("buy", "sell"):
        measures["side"] = side
    if raw.get("tokenAmountUsd") is not None:
        measures["amount_usd"] = raw.get("tokenAmountUsd")

    return Normalized(
        observations=[
            Observation(source_id, EntityKind.TOKEN, token, network, measures=measures),
            Observation(source_id, EntityKind.TRANSACTION, tx_hash, network, token_key=token, measures=measures),
        ]
    )


def _tracked_side(candidates: list[str], suffix: str | None) -> str:
    if suffix:
        for address in candidates:
            if address.endswith(suffix.lower()):
                return address
    return candidates[0] if candidates else ""


def _codex_event(event: Any, default_network: Any, *, source_id: str, suffix: str | None) -> list[Observation]:
    if not isinstance(event, Mapping):
        raise NormalizationSkip("codex event is not an object")
    network = canonical_network(event.get("networkId", default_network))
    tx_hash = _address(event.get("transactionHash"))
    if not tx_hash or not network:
        raise NormalizationSkip("codex event without a transaction hash or network")

    tokens = [
        address
        for address in (_address(event.get("token0Address")), _address(event.get("token1Address")))
        if address
    ]
    measures = {"event": event.get("eventType") or "Unknown"}
    observations = [Observation(source_id, EntityKind.TOKEN, address, network, measures=measures) for address in tokens]
    observations.append(
        Observation(
            source_id,
            EntityKind.TRANSACTION,
            tx_hash,
            network,
            token_key=_tracked_side(tokens, suffix),
            measures=measures,
        )
    )
    return observations


def normalize_codex_events(
    raw: RawEvent,
    *,
    source_id: str = "codex",
    suffix: str | None = None,
) -> Normalized:
    """Normalize Codex ``onEventsCreated`` payloads (event batches or single events)."""
    data = raw.get("data") if isinstance(raw, Mapping) else None
    created = data.get("onEventsCreated") if isinstance(data, Mapping) else None
    if created is None:
        return Normalized()

    batches = created if isinstance(created, list) else [created]
    observations: list[Observation] = []
    skipped = 0

    for batch in batches:
        if not isinstance(batch, Mapping):
            skipped += 1
            continue
        events = batch.get("events")
        if events is None:
            events = [batch]
        elif not isinstance(events, list):
            skipped += 1
            continue
        for event in events:
            try:
                observations.extend(
                    _codex_event(event, batch.get("networkId"), source_id=source_id, suffix=suffix)
                )
            except NormalizationSkip:
                skipped += 1

    return Normalized(observations=observations, skipped=skipped)


def normalize_codex_pairs(raw: RawEvent, *, source_id: str = "codex") -> Normalized:
    """Normalize Codex ``onLatestPairUpdated`` pair announcements into token observations."""
    data = raw.get("data") if isinstance(raw, Mapping) else None
    pair = data.get("onLatestPairUpdated") if isinstance(data, Mapping) else None
    if pair is None:
        return Normalized()
    if not isinstance(pair, Mapping):
        return Normalized(skipped=1)

    network = canonical_network(pair.get("networkId"))
    observations: list[Observation] = []
    skipped = 0
    for side in ("token0", "token1"):
        token = pair.get(side)
        address = _address(token.get("address")) if isinstance(token, Mapping) else ""
        if not address or not network:
            skipped += 1
            continue
        measures = _pick(token, ("symbol", "name"))
        measures.update(_pick(pair, ("liquidAt",)))
        if pair.get("address"):
            measures["pair"] = _address(pair.get("address"))
        observations.append(Observation(source_id, EntityKind.TOKEN, address, network, measures=measures))
    return Normalized(observations=observations, skipped=skipped)
