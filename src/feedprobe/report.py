"""Structured result record for one probe run."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from feedprobe.collector import SourceSnapshot
from feedprobe.compare import ActivityComparison, ComparisonResult, LookupComparison, Verdict
from feedprobe.ingest.observation import EntityKind


class ProbeStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    INCONCLUSIVE = "inconclusive"


@dataclass(frozen=True)
class WindowInfo:
    duration_seconds: float
    started_at: datetime
    ended_at: datetime
    elapsed_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration_seconds": self.duration_seconds,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass(frozen=True)
class ProbeReport:
    status: ProbeStatus
    candidate: str
    reference: str
    primary_kind: EntityKind
    threshold_percent: float
    window: WindowInfo | None
    sources: dict[str, SourceSnapshot]
    comparisons: dict[EntityKind, ComparisonResult] = field(default_factory=dict)
    lookup: LookupComparison | None = None
    activity: ActivityComparison | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def primary(self) -> ComparisonResult | LookupComparison | None:
        if self.lookup is not None:
            return self.lookup
        return self.comparisons.get(self.primary_kind)

    @property
    def coverage_percent(self) -> float | None:
        primary = self.primary
        return primary.coverage_percent if primary is not None else None

    def unavailable_sources(self) -> list[str]:
        return sorted(source for source, snap in self.sources.items() if not snap.available)

    def to_dict(self, *, include_items: bool = True) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "candidate": self.candidate,
            "reference": self.reference,
            "primary_kind": self.primary_kind.value,
            "threshold_percent": self.threshold_percent,
            "coverage_percent": self.coverage_percent,
            "window": self.window.to_dict() if self.window else None,
            "sources": {source: snap.to_dict() for source, snap in sorted(self.sources.items())},
            "unavailable_sources": self.unavailable_sources(),
            "comparisons": {
                kind.value: result.to_dict(include_items=include_items) for kind, result in self.comparisons.items()
            },
            "lookup": self.lookup.to_dict(include_items=include_items) if self.lookup else None,
            "activity": self.activity.to_dict() if self.activity else None,
            "notes": list(self.notes),
        }


def _required_source_notes(sources: Mapping[str, SourceSnapshot], required: list[str]) -> list[str]:
    """Explain why the run is inconclusive, one note per required source.

    A source counts as missing when it is absent, unavailable, or delivered
    nothing during the window (nothing admitted and nothing filtered out).
    A source whose traffic was all untracked is live and gets no note.
    """
    notes: list[str] = []
    for source_id in required:
        snap = sources.get(source_id)
        if snap is None:
            notes.append(f"{source_id}: source unavailable (not configured)")
        elif not snap.available:
            notes.append(f"{source_id}: source unavailable ({snap.failure or 'unknown error'})")
        elif snap.admitted == 0 and snap.filtered_out == 0:
            notes.append(f"{source_id}: no observations during the window")
    return notes


def assemble_report(
    sources: Mapping[str, SourceSnapshot],
    comparisons: Mapping[EntityKind, ComparisonResult],
    *,
    candidate: str,
    reference: str,
    primary_kind: EntityKind,
    threshold_percent: float,
    window: WindowInfo | None = None,
    lookup: LookupComparison | None = None,
    activity: ActivityComparison | None = None,
) -> ProbeReport:
    """Package comparison results with per-source diagnostics and a final status.

    A required source that was unavailable, or that delivered no observations at
    all during the window, makes the run ``inconclusive``. A live source whose
    observations were all filtered out is still scored, so an empty reference
    is a vacuous pass.
    """
    required = [candidate] if lookup is not None else [candidate, reference]
    notes = _required_source_notes(sources, required)
    if lookup is not None and not notes and lookup.checked == 0:
        if lookup.failed:
            notes.append(f"{reference}: every lookup failed, nothing could be checked")
        else:
            notes.append(f"{candidate}: no tracked {lookup.entity_kind.value}s to look up")

    if notes:
        status = ProbeStatus.INCONCLUSIVE
    else:
        primary = lookup if lookup is not None else comparisons.get(primary_kind)
        if primary is None:
            status = ProbeStatus.INCONCLUSIVE
            notes.append(f"no {primary_kind.value} comparison was computed")
        else:
            status = ProbeStatus.PASS if primary.verdict is Verdict.PASS else ProbeStatus.FAIL

    if lookup is not None and lookup.failed:
        notes.append(f"{len(lookup.failed)} lookups failed and were excluded from coverage")

    return ProbeReport(
        status=status,
        candidate=candidate,
        reference=reference,
        primary_kind=primary_kind,
        threshold_percent=threshold_percent,
        window=window,
        sources=dict(sources),
        comparisons=dict(comparisons),
        lookup=lookup,
        activity=activity,
        notes=notes,
    )


def window_info(duration_seconds: float, elapsed_seconds: float, ended_at: datetime | None = None) -> WindowInfo:
    ended = ended_at or datetime.now(UTC)
    return WindowInfo(
        duration_seconds=duration_seconds,
        started_at=datetime.fromtimestamp(ended.timestamp() - elapsed_seconds, tz=UTC),
        ended_at=ended,
        elapsed_seconds=elapsed_seconds,
    )


def assemble_watch_report(
    sources: Mapping[str, SourceSnapshot],
    *,
    source: str,
    kind: EntityKind = EntityKind.TOKEN,
    window: WindowInfo | None = None,
) -> ProbeReport:
    """Single-feed activity check: pass when any tracked identity was seen."""
    notes = _required_source_notes(sources, [source])
    snap = sources.get(source)
    if not notes and snap is not None and snap.identities(kind):
        status = ProbeStatus.PASS
    else:
        status = ProbeStatus.INCONCLUSIVE
        if not notes:
            notes.append(f"{source}: no tracked {kind.value}s observed (low activity or a feed issue)")

    return ProbeReport(
        status=status,
        candidate=source,
        reference=source,
        primary_kind=kind,
        threshold_percent=0.0,
        window=window,
        sources=dict(sources),
        notes=notes,
    )
