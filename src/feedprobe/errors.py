"""Error taxonomy for probe runs."""

from __future__ import annotations


class ProbeError(RuntimeError):
    """Base class for probe errors."""


class TransportFailure(ProbeError):
    """Raised when a feed could not connect, handshake, or closed unexpectedly."""

    def __init__(self, source_id: str, reason: str):
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class DecodeFailure(ProbeError):
    """Raised when a single frame cannot be decoded or decompressed."""


class NormalizationSkip(ProbeError):
    """Raised when a well-formed message lacks the fields needed for an observation."""


class LookupFailure(ProbeError):
    """Raised when a reference lookup errors (distinct from "not found")."""

    def __init__(self, identity_key: str, reason: str):
        super().__init__(f"lookup failed for {identity_key}: {reason}")
        self.identity_key = identity_key
        self.reason = reason


class AllSourcesUnavailable(ProbeError):
    """Raised when no source could contribute to a run."""

    def __init__(self, failures: dict[str, str]):
        detail = ", ".join(f"{source}={reason}" for source, reason in sorted(failures.items()))
        super().__init__(f"All sources unavailable: {detail}")
        self.failures = failures
