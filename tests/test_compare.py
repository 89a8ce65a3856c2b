"""Tests for overlap statistics and verdicts."""

import asyncio

import pytest

from feedprobe.compare import (
    Verdict,
    activity_ratio,
    compare,
    compare_by_lookup,
    coverage,
    evaluate,
    trade_count,
)
from feedprobe.errors import LookupFailure
from feedprobe.ingest.observation import EntityKind


class TestCoverage:
    """Tests for coverage() and evaluate()."""

    def test_empty_denominator_is_full_coverage(self):
        assert coverage(0, 0) == 1.0
        assert coverage(5, 0) == 1.0

    def test_threshold_tie_passes(self):
        """85 of 100 sits exactly on the threshold and passes."""
        ratio = coverage(85, 100)
        assert ratio * 100 == pytest.approx(85.0)
        assert evaluate(ratio, 85) is Verdict.PASS

    def test_below_threshold_fails(self):
        assert evaluate(coverage(84, 100), 85) is Verdict.FAIL

    def test_ratio_above_one_passes(self):
        assert evaluate(coverage(120, 100), 85) is Verdict.PASS

    def test_custom_threshold(self):
        assert evaluate(0.5, 50) is Verdict.PASS
        assert evaluate(0.49, 50) is Verdict.FAIL


class TestCompare:
    """Tests for compare()."""

    def test_partitions_three_token_scenario(self, make_snapshot):
        """{t1,t2,t3} against {t2,t3,t4}."""
        a = make_snapshot("a", tokens=["t1", "t2", "t3"])
        b = make_snapshot("b", tokens=["t2", "t3", "t4"])

        result = compare(a, b, EntityKind.TOKEN)

        assert result.common == frozenset({"t2", "t3"})
        assert result.only_candidate == frozenset({"t1"})
        assert result.only_reference == frozenset({"t4"})
        assert result.overlap_ratio == pytest.approx(2 / 3)
        assert result.overlap_ratio * 100 == pytest.approx(66.7, abs=0.05)

    def test_partition_is_complete(self, make_snapshot):
        a = make_snapshot("a", tokens=["t1", "t2", "t3", "t5"])
        b = make_snapshot("b", tokens=["t2", "t3", "t4"])

        result = compare(a, b, EntityKind.TOKEN)

        union = a.identities(EntityKind.TOKEN) | b.identities(EntityKind.TOKEN)
        assert result.union_size == len(union)
        assert not result.common & result.only_candidate
        assert not result.common & result.only_reference
        assert not result.only_candidate & result.only_reference

    def test_coverage_is_candidate_size_over_reference_size(self, make_snapshot):
        reference = make_snapshot("codex", transactions=[f"0x{i}" for i in range(100)])
        candidate = make_snapshot("mobula", transactions=[f"0x{i}" for i in range(85)])

        result = compare(candidate, reference, EntityKind.TRANSACTION, 85)

        assert result.coverage_percent == pytest.approx(85.0)
        assert result.verdict is Verdict.PASS
        assert result.candidate == "mobula"
        assert result.reference == "codex"

    def test_84_of_100_fails(self, make_snapshot):
        reference = make_snapshot("codex", transactions=[f"0x{i}" for i in range(100)])
        candidate = make_snapshot("mobula", transactions=[f"0x{i}" for i in range(84)])

        assert compare(candidate, reference, EntityKind.TRANSACTION, 85).verdict is Verdict.FAIL

    def test_empty_reference_passes(self, make_snapshot):
        """Nothing to miss is a vacuous pass."""
        result = compare(make_snapshot("a"), make_snapshot("b"), EntityKind.TOKEN)

        assert result.coverage_ratio == 1.0
        assert result.verdict is Verdict.PASS

    def test_to_dict_without_items(self, make_snapshot):
        a = make_snapshot("a", tokens=["t1"])
        b = make_snapshot("b", tokens=["t1", "t2"])

        payload = compare(a, b, EntityKind.TOKEN).to_dict(include_items=False)

        assert payload["common_count"] == 1
        assert payload["only_reference_count"] == 1
        assert payload["coverage_percent"] == 50.0
        assert payload["verdict"] == "fail"
        assert "common" not in payload


class TestCompareByLookup:
    """Tests for compare_by_lookup()."""

    def _lookup(self, known, failing=()):
        calls = []

        async def lookup(key):
            calls.append(key)
            if key in failing:
                raise LookupFailure(key, "HTTP 500")
            return {"id": key} if key in known else None

        return lookup, calls

    def test_found_missing_and_failed_are_distinct(self, make_snapshot):
        candidate = make_snapshot("pulse", tokens=["a4444", "b4444", "c4444", "d4444"])
        lookup, calls = self._lookup(known={"a4444", "b4444"}, failing={"d4444"})

        result = asyncio.run(compare_by_lookup(candidate, lookup, reference="coingecko"))

        assert result.found == frozenset({"a4444", "b4444"})
        assert result.missing == frozenset({"c4444"})
        assert result.failed == frozenset({"d4444"})
        assert result.checked == 3
        assert result.coverage_ratio == pytest.approx(2 / 3)
        assert result.verdict is Verdict.FAIL
        assert calls == sorted(calls)
        assert result.records["a4444"] == {"id": "a4444"}

    def test_failures_are_excluded_from_denominator(self, make_snapshot):
        candidate = make_snapshot("pulse", tokens=["a4444", "b4444"])
        lookup, _ = self._lookup(known={"a4444"}, failing={"b4444"})

        result = asyncio.run(compare_by_lookup(candidate, lookup, reference="coingecko"))

        assert result.coverage_ratio == 1.0
        assert result.verdict is Verdict.PASS

    def test_unexpected_lookup_errors_count_as_failed(self, make_snapshot):
        candidate = make_snapshot("pulse", tokens=["a4444", "b4444"])

        async def lookup(key):
            if key == "b4444":
                raise RuntimeError("boom")
            return {"id": key}

        result = asyncio.run(compare_by_lookup(candidate, lookup, reference="coingecko"))

        assert result.found == frozenset({"a4444"})
        assert result.failed == frozenset({"b4444"})
        assert result.verdict is Verdict.PASS

    def test_sleeps_between_lookups(self, make_snapshot):
        candidate = make_snapshot("pulse", tokens=["a4444", "b4444", "c4444"])
        lookup, _ = self._lookup(known={"a4444", "b4444", "c4444"})
        sleeps: list[float] = []

        async def sleep(seconds):
            sleeps.append(seconds)

        asyncio.run(
            compare_by_lookup(candidate, lookup, reference="coingecko", delay_seconds=1.0, sleep=sleep)
        )

        assert sleeps == [1.0, 1.0]


class TestActivity:
    """Tests for trade_count() and activity_ratio()."""

    def test_counts_swaps_when_events_are_labelled(self, make_snapshot):
        snapshot = make_snapshot(
            "codex",
            counters={EntityKind.TRANSACTION: {"observations": 10, "event:Swap": 7, "event:Mint": 3}},
        )
        assert trade_count(snapshot) == 7

    def test_counts_observations_otherwise(self, make_snapshot):
        snapshot = make_snapshot("mobula", counters={EntityKind.TRANSACTION: {"observations": 9, "side:buy": 5}})
        assert trade_count(snapshot) == 9

    def test_activity_ratio(self):
        activity = activity_ratio(9, 7)

        assert activity.difference == 2
        assert activity.coverage_ratio == pytest.approx(9 / 7)
        assert activity_ratio(0, 0).coverage_ratio == 1.0
