"""Bounded collection window with per-source deduplicated accumulators."""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

import structlog

from feedprobe.ingest.filter import IdentityFilter
from feedprobe.ingest.observation import EntityKind, Observation

logger = structlog.get_logger()

# Measures that summarize activity volume rather than identity.
SECONDARY_MEASURES = ("side", "event")


class WindowState(Enum):
    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SourceSnapshot:
    """Frozen view of one source's accumulator at window close."""

    source_id: str
    seen: Mapping[EntityKind, frozenset[str]]
    first_measures: Mapping[EntityKind, Mapping[str, Mapping[str, Any]]]
    counters: Mapping[EntityKind, Mapping[str, int]]
    admitted: int = 0
    filtered_out: int = 0
    decode_failures: int = 0
    normalization_skips: int = 0
    available: bool = True
    failure: str | None = None

    def identities(self, kind: EntityKind) -> frozenset[str]:
        return self.seen.get(kind, frozenset())

    def count(self, kind: EntityKind, name: str) -> int:
        return self.counters.get(kind, {}).get(name, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source_id,
            "available": self.available,
            "failure": self.failure,
            "admitted": self.admitted,
            "filtered_out": self.filtered_out,
            "decode_failures": self.decode_failures,
            "normalization_skips": self.normalization_skips,
            "unique": {kind.value: len(keys) for kind, keys in self.seen.items()},
            "counters": {kind.value: dict(values) for kind, values in self.counters.items()},
        }


@dataclass
class SourceAccumulator:
    """Deduplicated identity sets for one source.

    Insertion is first-write-wins: the first admitted observation for an
    identity fixes its ``first_measures`` entry and later repeats never
    re-count the identity. Secondary counters grow on every admission.
    """

    source_id: str
    seen: dict[EntityKind, set[str]] = field(default_factory=lambda: {kind: set() for kind in EntityKind})
    first_measures: dict[EntityKind, dict[str, Mapping[str, Any]]] = field(
        default_factory=lambda: {kind: {} for kind in EntityKind}
    )
    counters: dict[EntityKind, Counter] = field(default_factory=lambda: {kind: Counter() for kind in EntityKind})
    admitted: int = 0
    filtered_out: int = 0
    decode_failures: int = 0
    normalization_skips: int = 0
    available: bool = True
    failure: str | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def insert(self, observation: Observation) -> bool:
        kind = observation.entity_kind
        self.admitted += 1
        self.counters[kind]["observations"] += 1
        for name in SECONDARY_MEASURES:
            value = observation.measures.get(name)
            if value is not None:
                self.counters[kind][f"{name}:{value}"] += 1

        if observation.identity_key in self.seen[kind]:
            return False
        self.seen[kind].add(observation.identity_key)
        self.first_measures[kind][observation.identity_key] = dict(observation.measures)
        return True

    def snapshot(self) -> SourceSnapshot:
        return SourceSnapshot(
            source_id=self.source_id,
            seen=MappingProxyType({kind: frozenset(keys) for kind, keys in self.seen.items()}),
            first_measures=MappingProxyType(
                {kind: MappingProxyType(dict(values)) for kind, values in self.first_measures.items()}
            ),
            counters=MappingProxyType({kind: MappingProxyType(dict(values)) for kind, values in self.counters.items()}),
            admitted=self.admitted,
            filtered_out=self.filtered_out,
            decode_failures=self.decode_failures,
            normalization_skips=self.normalization_skips,
            available=self.available,
            failure=self.failure,
        )


class Collector:
    """Owns one run's collection window.

    ``admit`` may be called from any adapter at any time; it is a no-op unless
    the window is open and its duration has not elapsed on ``now_fn``.
    """

    def __init__(
        self,
        identity_filter: IdentityFilter,
        duration_seconds: float,
        *,
        sources: Iterable[str] = (),
        now_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        self._filter = identity_filter
        self._duration = duration_seconds
        self._now = now_fn
        self._state = WindowState.PENDING
        self._started_at: float | None = None
        self._closed_at: float | None = None
        self._snapshot: Mapping[str, SourceSnapshot] | None = None
        self._state_lock = threading.Lock()
        self._accumulators: dict[str, SourceAccumulator] = {}
        for source_id in sources:
            self.register(source_id)

    @property
    def state(self) -> WindowState:
        return self._state

    @property
    def started_at(self) -> float | None:
        return self._started_at

    @property
    def duration_seconds(self) -> float:
        return self._duration

    def register(self, source_id: str) -> SourceAccumulator:
        with self._state_lock:
            accumulator = self._accumulators.get(source_id)
            if accumulator is None:
                accumulator = SourceAccumulator(source_id=source_id)
                self._accumulators[source_id] = accumulator
            return accumulator

    def open(self) -> None:
        with self._state_lock:
            if self._state is not WindowState.PENDING:
                raise RuntimeError(f"Collection window already {self._state.value}")
            self._started_at = self._now()
            self._state = WindowState.OPEN
        logger.info("Collection window opened", duration_seconds=self._duration, sources=sorted(self._accumulators))

    def is_open(self) -> bool:
        if self._state is not WindowState.OPEN or self._started_at is None:
            return False
        return self._now() - self._started_at < self._duration

    def _accumulator(self, source_id: str) -> SourceAccumulator | None:
        if not self.is_open():
            return None
        accumulator = self._accumulators.get(source_id)
        if accumulator is None:
            accumulator = self.register(source_id)
        return accumulator

    def admit(self, observation: Observation) -> bool:
        """Admit an observation; returns True only for a newly seen identity."""
        accumulator = self._accumulator(observation.source_id)
        if accumulator is None:
            return False

        tracked = self._filter.is_tracked(observation)
        with accumulator.lock:
            # Re-check under the lock so a concurrent close() is a hard cutover.
            if self._state is not WindowState.OPEN:
                return False
            if not tracked:
                accumulator.filtered_out += 1
                return False
            is_new = accumulator.insert(observation)

        if is_new:
            logger.debug(
                "Tracked identity",
                source=observation.source_id,
                kind=observation.entity_kind.value,
                key=observation.identity_key,
            )
        return is_new

    def admit_all(self, observations: Iterable[Observation]) -> int:
        return sum(1 for observation in observations if self.admit(observation))

    def record_decode_failure(self, source_id: str) -> None:
        accumulator = self._accumulator(source_id)
        if accumulator is None:
            return
        with accumulator.lock:
            if self._state is WindowState.OPEN:
                accumulator.decode_failures += 1

    def record_skip(self, source_id: str, count: int = 1) -> None:
        if count <= 0:
            return
        accumulator = self._accumulator(source_id)
        if accumulator is None:
            return
        with accumulator.lock:
            if self._state is WindowState.OPEN:
                accumulator.normalization_skips += count

    def mark_unavailable(self, source_id: str, reason: str) -> None:
        """Flag a source whose transport failed; allowed until the window closes."""
        with self._state_lock:
            if self._state is WindowState.CLOSED:
                return
            accumulator = self._accumulators.get(source_id)
            if accumulator is None:
                accumulator = SourceAccumulator(source_id=source_id)
                self._accumulators[source_id] = accumulator
        with accumulator.lock:
            accumulator.available = False
            accumulator.failure = reason
        logger.warning("Source unavailable", source=source_id, reason=reason)

    def close(self) -> Mapping[str, SourceSnapshot]:
        """Freeze the window; idempotent, always returns the same snapshot mapping."""
        with self._state_lock:
            if self._snapshot is not None:
                return self._snapshot
            self._closed_at = self._now()
            self._state = WindowState.CLOSED

            snapshots: dict[str, SourceSnapshot] = {}
            for accumulator in self._accumulators.values():
                # Waiting on each lock drains admits that passed the gate before close().
                with accumulator.lock:
                    snapshots[accumulator.source_id] = accumulator.snapshot()
            self._snapshot = MappingProxyType(snapshots)

        logger.info(
            "Collection window closed",
            elapsed_seconds=round(self.elapsed_seconds(), 2),
            admitted={source: snap.admitted for source, snap in snapshots.items()},
        )
        return self._snapshot

    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._closed_at if self._closed_at is not None else self._now()
        return end - self._started_at
