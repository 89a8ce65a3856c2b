"""Admission gate for the tracked token population."""

from __future__ import annotations

from dataclasses import dataclass

from feedprobe.ingest.observation import Observation


@dataclass(frozen=True)
class IdentityFilter:
    """Tracks tokens whose address ends with ``suffix`` on exactly ``network``."""

    suffix: str
    network: str

    def is_tracked(self, observation: Observation) -> bool:
        if not observation.token_key:
            return False
        if not observation.token_key.endswith(self.suffix.lower()):
            return False
        return observation.network_key == self.network

    def matches_address(self, address: str | None) -> bool:
        return bool(address) and str(address).lower().endswith(self.suffix.lower())
