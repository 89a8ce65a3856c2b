"""Overlap statistics and threshold verdicts between sources."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from feedprobe.collector import SourceSnapshot
from feedprobe.errors import LookupFailure
from feedprobe.ingest.observation import EntityKind

logger = structlog.get_logger()

DEFAULT_THRESHOLD_PERCENT = 85.0

Lookup = Callable[[str], Awaitable[dict[str, Any] | None]]


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"


def coverage(numerator: int, denominator: int) -> float:
    """Fraction covered; an empty denominator has nothing to miss and yields 1.0."""
    if denominator <= 0:
        return 1.0
    return numerator / denominator


def evaluate(ratio: float, threshold_percent: float = DEFAULT_THRESHOLD_PERCENT) -> Verdict:
    """Pass iff ``ratio * 100 >= threshold_percent``; ties pass."""
    # Decimal keeps 0.85 * 100 at exactly 85 instead of 85.00000000000001 or 84.999...
    percent = Decimal(str(ratio)) * 100
    if percent >= Decimal(str(threshold_percent)):
        return Verdict.PASS
    return Verdict.FAIL


@dataclass(frozen=True)
class ComparisonResult:
    candidate: str
    reference: str
    entity_kind: EntityKind
    candidate_size: int
    reference_size: int
    common: frozenset[str]
    only_candidate: frozenset[str]
    only_reference: frozenset[str]
    coverage_ratio: float
    threshold_percent: float
    verdict: Verdict

    @property
    def union_size(self) -> int:
        return len(self.common) + len(self.only_candidate) + len(self.only_reference)

    @property
    def overlap_ratio(self) -> float:
        """Share of the reference set the candidate also reported."""
        return coverage(len(self.common), self.reference_size)

    @property
    def coverage_percent(self) -> float:
        return self.coverage_ratio * 100

    def to_dict(self, *, include_items: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "candidate": self.candidate,
            "reference": self.reference,
            "entity_kind": self.entity_kind.value,
            "candidate_size": self.candidate_size,
            "reference_size": self.reference_size,
            "union_size": self.union_size,
            "common_count": len(self.common),
            "only_candidate_count": len(self.only_candidate),
            "only_reference_count": len(self.only_reference),
            "coverage_percent": round(self.coverage_percent, 4),
            "overlap_percent": round(self.overlap_ratio * 100, 4),
            "threshold_percent": self.threshold_percent,
            "verdict": self.verdict.value,
        }
        if include_items:
            payload["common"] = sorted(self.common)
            payload["only_candidate"] = sorted(self.only_candidate)
            payload["only_reference"] = sorted(self.only_reference)
        return payload


def compare(
    candidate: SourceSnapshot,
    reference: SourceSnapshot,
    kind: EntityKind,
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
) -> ComparisonResult:
    """Partition both ``seen`` sets and score the candidate against the reference."""
    left = candidate.identities(kind)
    right = reference.identities(kind)
    common = left & right
    only_left = left - right
    only_right = right - left

    ratio = coverage(len(left), len(right))
    return ComparisonResult(
        candidate=candidate.source_id,
        reference=reference.source_id,
        entity_kind=kind,
        candidate_size=len(left),
        reference_size=len(right),
        common=frozenset(common),
        only_candidate=frozenset(only_left),
        only_reference=frozenset(only_right),
        coverage_ratio=ratio,
        threshold_percent=threshold_percent,
        verdict=evaluate(ratio, threshold_percent),
    )


@dataclass(frozen=True)
class LookupComparison:
    """Candidate identities checked one by one against a reference lookup."""

    candidate: str
    reference: str
    entity_kind: EntityKind
    found: frozenset[str]
    missing: frozenset[str]
    failed: frozenset[str]
    coverage_ratio: float
    threshold_percent: float
    verdict: Verdict
    records: dict[str, dict[str, Any]] = field(default_factory=dict, compare=False)

    @property
    def checked(self) -> int:
        return len(self.found) + len(self.missing)

    @property
    def coverage_percent(self) -> float:
        return self.coverage_ratio * 100

    def to_dict(self, *, include_items: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "candidate": self.candidate,
            "reference": self.reference,
            "entity_kind": self.entity_kind.value,
            "checked": self.checked,
            "found_count": len(self.found),
            "missing_count": len(self.missing),
            "failed_count": len(self.failed),
            "coverage_percent": round(self.coverage_percent, 4),
            "threshold_percent": self.threshold_percent,
            "verdict": self.verdict.value,
        }
        if include_items:
            payload["found"] = sorted(self.found)
            payload["missing"] = sorted(self.missing)
            payload["failed"] = sorted(self.failed)
        return payload


async def compare_by_lookup(
    candidate: SourceSnapshot,
    lookup: Lookup,
    *,
    reference: str,
    kind: EntityKind = EntityKind.TOKEN,
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> LookupComparison:
    """Check every candidate identity against ``lookup``.

    ``None`` means the reference does not know the identity (counted as
    missing). A ``LookupFailure``, or any other error raised by ``lookup``,
    means it could not be checked and is left out of both sides of the ratio.
    """
    found: set[str] = set()
    missing: set[str] = set()
    failed: set[str] = set()
    records: dict[str, dict[str, Any]] = {}

    for index, key in enumerate(sorted(candidate.identities(kind))):
        if index and delay_seconds > 0:
            await sleep(delay_seconds)
        try:
            record = await lookup(key)
        except LookupFailure as exc:
            logger.warning("Lookup failed", key=key, reason=exc.reason)
            failed.add(key)
            continue
        except Exception as exc:
            logger.warning("Lookup failed", key=key, reason=str(exc), error_type=type(exc).__name__)
            failed.add(key)
            continue

        if record is None:
            logger.info("Not found in reference", key=key, reference=reference)
            missing.add(key)
        else:
            logger.debug("Found in reference", key=key, reference=reference)
            found.add(key)
            records[key] = record

    ratio = coverage(len(found), len(found) + len(missing))
    return LookupComparison(
        candidate=candidate.source_id,
        reference=reference,
        entity_kind=kind,
        found=frozenset(found),
        missing=frozenset(missing),
        failed=frozenset(failed),
        coverage_ratio=ratio,
        threshold_percent=threshold_percent,
        verdict=evaluate(ratio, threshold_percent),
        records=records,
    )


@dataclass(frozen=True)
class ActivityComparison:
    """Raw activity volume of the candidate against the reference (trades vs swap events)."""

    candidate_count: int
    reference_count: int
    coverage_ratio: float

    @property
    def difference(self) -> int:
        return self.candidate_count - self.reference_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate_count": self.candidate_count,
            "reference_count": self.reference_count,
            "coverage_percent": round(self.coverage_ratio * 100, 4),
            "difference": self.difference,
        }


def trade_count(snapshot: SourceSnapshot) -> int:
    """Admitted trade observations; sources that label event types count only swaps."""
    counters = snapshot.counters.get(EntityKind.TRANSACTION, {})
    if any(name.startswith("event:") for name in counters):
        return counters.get("event:Swap", 0)
    return counters.get("observations", 0)


def activity_ratio(candidate_count: int, reference_count: int) -> ActivityComparison:
    return ActivityComparison(
        candidate_count=candidate_count,
        reference_count=reference_count,
        coverage_ratio=coverage(candidate_count, reference_count),
    )
