"""Probe run orchestration: collect from live feeds for one window, then score."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence

import structlog

from feedprobe.collector import Collector, SourceSnapshot
from feedprobe.compare import activity_ratio, compare, compare_by_lookup, trade_count
from feedprobe.config import ProbeConfig
from feedprobe.errors import AllSourcesUnavailable, TransportFailure
from feedprobe.feeds.base import FeedBinding
from feedprobe.feeds.coingecko import RestLookupClient
from feedprobe.ingest.filter import IdentityFilter
from feedprobe.ingest.observation import EntityKind
from feedprobe.report import ProbeReport, WindowInfo, assemble_report, assemble_watch_report, window_info

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


async def _pump(binding: FeedBinding, collector: Collector) -> None:
    source_id = binding.source_id

    def on_decode_failure() -> None:
        collector.record_decode_failure(source_id)

    try:
        async for raw in binding.adapter.stream(on_decode_failure=on_decode_failure):
            normalized = binding.normalizer(raw)
            collector.record_skip(source_id, normalized.skipped)
            collector.admit_all(normalized.observations)
    except TransportFailure as exc:
        collector.mark_unavailable(source_id, exc.reason)
    except Exception as exc:
        logger.exception("Feed crashed", source=source_id)
        collector.mark_unavailable(source_id, f"{type(exc).__name__}: {exc}")


async def _shutdown(bindings: Sequence[FeedBinding], tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    for binding in bindings:
        try:
            await binding.adapter.close()
        except Exception as exc:
            logger.warning("Feed close failed", source=binding.source_id, error=str(exc))


async def collect(
    bindings: Sequence[FeedBinding],
    config: ProbeConfig,
    *,
    sleep: Sleep = asyncio.sleep,
    now_fn: Callable[[], float] = time.monotonic,
) -> tuple[Mapping[str, SourceSnapshot], WindowInfo]:
    """Run every feed into one collector for ``config.window_seconds``.

    Raises ``AllSourcesUnavailable`` when no feed could contribute.
    """
    if not bindings:
        raise ValueError("at least one feed is required")

    collector = Collector(
        IdentityFilter(config.address_suffix, config.target_network),
        config.window_seconds,
        sources=[binding.source_id for binding in bindings],
        now_fn=now_fn,
    )
    collector.open()
    tasks = [asyncio.create_task(_pump(binding, collector), name=f"feed:{binding.source_id}") for binding in bindings]

    logger.info("Collecting from feeds", window_seconds=config.window_seconds, feeds=len(tasks))
    try:
        await sleep(config.window_seconds)
    finally:
        snapshots = collector.close()
        await _shutdown(bindings, tasks)

    window = window_info(config.window_seconds, collector.elapsed_seconds())
    failures = {source: snap.failure or "unavailable" for source, snap in snapshots.items() if not snap.available}
    if len(failures) == len(snapshots):
        raise AllSourcesUnavailable(failures)
    return snapshots, window


async def run_probe(
    bindings: Sequence[FeedBinding],
    config: ProbeConfig,
    *,
    sleep: Sleep = asyncio.sleep,
    now_fn: Callable[[], float] = time.monotonic,
) -> ProbeReport:
    """Stream-vs-stream probe: score ``config.candidate`` against ``config.reference``."""
    snapshots, window = await collect(bindings, config, sleep=sleep, now_fn=now_fn)

    comparisons = {}
    activity = None
    candidate = snapshots.get(config.candidate)
    reference = snapshots.get(config.reference)
    if candidate is not None and reference is not None:
        for kind in EntityKind:
            comparisons[kind] = compare(candidate, reference, kind, config.threshold_percent)
        activity = activity_ratio(trade_count(candidate), trade_count(reference))

    report = assemble_report(
        snapshots,
        comparisons,
        candidate=config.candidate,
        reference=config.reference,
        primary_kind=config.primary_kind,
        threshold_percent=config.threshold_percent,
        window=window,
        activity=activity,
    )
    logger.info("Probe complete", status=report.status.value, coverage_percent=report.coverage_percent)
    return report


async def run_lookup_probe(
    binding: FeedBinding,
    lookup_client: RestLookupClient,
    config: ProbeConfig,
    *,
    indexing_delay_seconds: float = 0.0,
    lookup_delay_seconds: float = 0.0,
    sleep: Sleep = asyncio.sleep,
    now_fn: Callable[[], float] = time.monotonic,
) -> ProbeReport:
    """Collect tokens from one stream, then check each one against the REST reference."""
    snapshots, window = await collect([binding], config, sleep=sleep, now_fn=now_fn)
    candidate = snapshots[binding.source_id]

    if candidate.identities(EntityKind.TOKEN) and indexing_delay_seconds > 0:
        logger.info("Waiting for reference indexing", seconds=indexing_delay_seconds)
        await sleep(indexing_delay_seconds)
    lookup = await compare_by_lookup(
        candidate,
        lookup_client.lookup,
        reference=lookup_client.source_id,
        kind=EntityKind.TOKEN,
        threshold_percent=config.threshold_percent,
        delay_seconds=lookup_delay_seconds,
        sleep=sleep,
    )

    report = assemble_report(
        snapshots,
        {},
        candidate=binding.source_id,
        reference=lookup_client.source_id,
        primary_kind=EntityKind.TOKEN,
        threshold_percent=config.threshold_percent,
        window=window,
        lookup=lookup,
    )
    logger.info("Probe complete", status=report.status.value, coverage_percent=report.coverage_percent)
    return report


async def run_watch(
    binding: FeedBinding,
    config: ProbeConfig,
    *,
    kind: EntityKind = EntityKind.TOKEN,
    sleep: Sleep = asyncio.sleep,
    now_fn: Callable[[], float] = time.monotonic,
) -> ProbeReport:
    """Single-feed activity check over one window."""
    snapshots, window = await collect([binding], config, sleep=sleep, now_fn=now_fn)
    return assemble_watch_report(snapshots, source=binding.source_id, kind=kind, window=window)
