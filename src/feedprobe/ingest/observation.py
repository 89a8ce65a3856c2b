"""Canonical observation contract shared by every feed."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

RawEvent = dict[str, Any]


class EntityKind(str, Enum):
    TOKEN = "token"
    TRANSACTION = "transaction"


@dataclass(frozen=True)
class Observation:
    """One token or transaction sighting from a single source.

    ``identity_key`` and ``token_key`` are lower-cased on construction; they are
    the only fields used for matching. ``measures`` is carried for reporting.
    """

    source_id: str
    entity_kind: EntityKind
    identity_key: str
    network_key: str
    token_key: str = ""
    measures: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        identity = self.identity_key.strip().lower()
        object.__setattr__(self, "identity_key", identity)
        token = (self.token_key or "").strip().lower()
        if not token and self.entity_kind is EntityKind.TOKEN:
            token = identity
        object.__setattr__(self, "token_key", token)
        object.__setattr__(self, "network_key", str(self.network_key))


@dataclass(frozen=True)
class Normalized:
    """Result of normalizing one raw event."""

    observations: list[Observation] = field(default_factory=list)
    skipped: int = 0


NETWORK_ALIASES = {
    "bsc": "evm:56",
    "bnb": "evm:56",
    "binance-smart-chain": "evm:56",
    "bnb smart chain (bep20)": "evm:56",
}


def canonical_network(value: Any, prefix: str = "evm") -> str:
    """Return the canonical network key, e.g. ``56`` -> ``evm:56``."""
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, int):
        return f"{prefix}:{value}"
    text = str(value).strip()
    if text.isdigit():
        return f"{prefix}:{text}"
    return NETWORK_ALIASES.get(text.lower(), text)
