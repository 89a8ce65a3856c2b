"""CLI entry point using Typer."""

import asyncio
import json
import sys

import structlog
import typer
from rich.console import Console
from rich.table import Table

from feedprobe.ingest.observation import EntityKind

app = typer.Typer(
    name="feedprobe",
    help="Feed Probe - cross-source coverage health checks for live market-data feeds.",
)
console = Console()
pools_app = typer.Typer(help="Watched pool helpers.")
app.add_typer(pools_app, name="pools")

# Configure structured logging (stderr keeps --json output clean)
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(sys.stderr),
)

EXIT_CODES = {"pass": 0, "fail": 1, "inconclusive": 2}
EXIT_UNAVAILABLE = 3

ITEM_PREVIEW = 5


def _preview(items, label=lambda value: value) -> str:
    ordered = sorted(items)
    shown = [label(item) for item in ordered[:ITEM_PREVIEW]]
    if len(ordered) > ITEM_PREVIEW:
        shown.append(f"... and {len(ordered) - ITEM_PREVIEW} more")
    return "\n".join(shown)


def _render_sources(report) -> None:
    table = Table(title="Sources")
    table.add_column("Source", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Admitted", style="green")
    table.add_column("Filtered out", style="white")
    table.add_column("Unique tokens", style="green")
    table.add_column("Unique txs", style="green")
    table.add_column("Decode failures", style="yellow")
    table.add_column("Skipped", style="yellow")
    table.add_column("Breakdown", style="magenta")
    for source, snap in sorted(report.sources.items()):
        breakdown = ", ".join(
            f"{name}={count}"
            for name, count in sorted(snap.counters.get(EntityKind.TRANSACTION, {}).items())
            if name != "observations"
        )
        table.add_row(
            source,
            "ok" if snap.available else f"unavailable: {snap.failure}",
            str(snap.admitted),
            str(snap.filtered_out),
            str(len(snap.identities(EntityKind.TOKEN))),
            str(len(snap.identities(EntityKind.TRANSACTION))),
            str(snap.decode_failures),
            str(snap.normalization_skips),
            breakdown,
        )
    console.print(table)


def _render_report(report, token_label=lambda value: value) -> None:
    _render_sources(report)

    for kind, result in report.comparisons.items():
        label = token_label if kind is EntityKind.TOKEN else (lambda value: f"{value[:18]}...")
        table = Table(title=f"{kind.value.title()} Comparison")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Total unique", str(result.union_size))
        table.add_row("Found by both", str(len(result.common)))
        table.add_row(f"Only {result.candidate}", str(len(result.only_candidate)))
        table.add_row(f"Only {result.reference}", str(len(result.only_reference)))
        table.add_row("Coverage", f"{result.coverage_percent:.2f}% (threshold {result.threshold_percent:.0f}%)")
        table.add_row("Overlap", f"{result.overlap_ratio * 100:.2f}% of {result.reference}")
        if result.common:
            table.add_row("Common", _preview(result.common, label))
        if result.only_candidate:
            table.add_row(f"{result.candidate} only", _preview(result.only_candidate, label))
        if result.only_reference:
            table.add_row(f"{result.reference} only", _preview(result.only_reference, label))
        console.print(table)

    if report.activity is not None:
        activity = report.activity
        ahead = report.candidate if activity.difference >= 0 else report.reference
        console.print(
            f"[cyan]Trade activity:[/cyan] {activity.candidate_count} vs {activity.reference_count} swaps "
            f"({activity.coverage_ratio * 100:.2f}%, {ahead} ahead)"
        )

    if report.lookup is not None:
        lookup = report.lookup
        table = Table(title=f"{lookup.candidate} vs {lookup.reference} Lookup")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Checked", str(lookup.checked))
        table.add_row("Found on both", str(len(lookup.found)))
        table.add_row(f"Only {lookup.candidate}", str(len(lookup.missing)))
        table.add_row("Lookup failures", str(len(lookup.failed)))
        table.add_row("Match rate", f"{lookup.coverage_percent:.1f}% (threshold {lookup.threshold_percent:.0f}%)")
        if lookup.missing:
            table.add_row("Missing", _preview(lookup.missing, token_label))
        console.print(table)

    for note in report.notes:
        console.print(f"[yellow]Note:[/yellow] {note}")

    status = report.status.value
    coverage = report.coverage_percent
    detail = f" - coverage {coverage:.2f}%" if coverage is not None and report.threshold_percent else ""
    if status == "pass":
        console.print(f"[bold green]HEALTH CHECK PASSED[/bold green]{detail}")
    elif status == "fail":
        console.print(f"[bold red]HEALTH CHECK FAILED[/bold red]{detail}")
    else:
        console.print(f"[bold yellow]HEALTH CHECK INCONCLUSIVE[/bold yellow]{detail}")


def _finish(report, as_json: bool, token_label=lambda value: value) -> None:
    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        _render_report(report, token_label)
    raise typer.Exit(EXIT_CODES[report.status.value])


def _run(coro):
    from feedprobe.errors import AllSourcesUnavailable

    try:
        return asyncio.run(coro)
    except AllSourcesUnavailable as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(EXIT_UNAVAILABLE)


@app.command()
def compare(
    candidate: str = typer.Option(None, "--candidate", help="Candidate feed (default from settings)"),
    reference: str = typer.Option(None, "--reference", help="Reference feed (default from settings)"),
    window: float = typer.Option(None, "--window", help="Collection window in seconds"),
    threshold: float = typer.Option(None, "--threshold", help="Coverage threshold percent"),
    kind: EntityKind = typer.Option(None, "--kind", help="Entity kind that decides the verdict"),
    as_json: bool = typer.Option(False, "--json", help="Print the structured report as JSON"),
) -> None:
    """Compare two live feeds over one collection window."""
    from feedprobe.config import settings
    from feedprobe.feeds.factory import build_feed
    from feedprobe.jobs.probe import run_probe
    from feedprobe.watchlist import load_watchlist

    config = settings.probe_config(
        candidate=candidate,
        reference=reference,
        window_seconds=window,
        threshold_percent=threshold,
        primary_kind=kind,
    )
    watchlist = load_watchlist(settings.watchlist_path)

    try:
        bindings = [build_feed(name, settings, watchlist) for name in (config.candidate, config.reference)]
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(EXIT_UNAVAILABLE)

    if not as_json:
        console.print(
            f"[bold blue]Comparing {config.candidate} against {config.reference} "
            f"for {config.window_seconds:.0f}s...[/bold blue]"
        )
    report = _run(run_probe(bindings, config))
    _finish(report, as_json, watchlist.token_label)


@app.command()
def lookup(
    feed: str = typer.Option("mobula-pulse", "--feed", help="Streaming feed that supplies candidate tokens"),
    window: float = typer.Option(5.0, "--window", help="Collection window in seconds"),
    threshold: float = typer.Option(None, "--threshold", help="Match-rate threshold percent"),
    indexing_delay: float = typer.Option(None, "--indexing-delay", help="Seconds to wait before lookups"),
    as_json: bool = typer.Option(False, "--json", help="Print the structured report as JSON"),
) -> None:
    """Check tokens seen on a live feed against the CoinGecko REST API."""
    from feedprobe.config import settings
    from feedprobe.feeds.factory import build_feed, build_lookup_client
    from feedprobe.jobs.probe import run_lookup_probe
    from feedprobe.watchlist import load_watchlist

    config = settings.probe_config(
        candidate=feed,
        reference="coingecko",
        window_seconds=window,
        threshold_percent=threshold,
        primary_kind=EntityKind.TOKEN,
    )
    try:
        binding = build_feed(feed, settings, load_watchlist(settings.watchlist_path))
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(EXIT_UNAVAILABLE)

    delay = settings.indexing_delay_seconds if indexing_delay is None else indexing_delay

    async def _lookup_run():
        async with build_lookup_client(settings) as client:
            return await run_lookup_probe(
                binding,
                client,
                config,
                indexing_delay_seconds=delay,
                lookup_delay_seconds=settings.lookup_delay_seconds,
            )

    if not as_json:
        console.print(f"[bold blue]Collecting {feed} tokens for {window:.0f}s, then checking CoinGecko...[/bold blue]")
    report = _run(_lookup_run())
    _finish(report, as_json)


@app.command()
def watch(
    feed: str = typer.Option("mobula-pulse", "--feed", help="Feed to watch"),
    window: float = typer.Option(60.0, "--window", help="Collection window in seconds"),
    kind: EntityKind = typer.Option(EntityKind.TOKEN, "--kind", help="Entity kind that must be observed"),
    as_json: bool = typer.Option(False, "--json", help="Print the structured report as JSON"),
) -> None:
    """Watch a single feed and report whether tracked activity was observed."""
    from feedprobe.config import settings
    from feedprobe.feeds.factory import build_feed
    from feedprobe.jobs.probe import run_watch
    from feedprobe.watchlist import load_watchlist

    config = settings.probe_config(candidate=feed, reference=feed, window_seconds=window, primary_kind=kind)
    watchlist = load_watchlist(settings.watchlist_path)
    try:
        binding = build_feed(feed, settings, watchlist)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(EXIT_UNAVAILABLE)

    if not as_json:
        console.print(f"[bold blue]Listening to {feed} for {window:.0f}s...[/bold blue]")
    report = _run(run_watch(binding, config, kind=kind))
    _finish(report, as_json, watchlist.token_label)


@pools_app.command("list")
def list_pools(path: str = typer.Option(None, "--path", help="Path to pools YAML file")) -> None:
    """List watched pools."""
    from feedprobe.config import settings
    from feedprobe.watchlist import load_watchlist

    watchlist = load_watchlist(path or settings.watchlist_path)
    table = Table(title="Watched Pools")
    table.add_column("#", style="cyan")
    table.add_column("Symbol", style="green")
    table.add_column("Name", style="white")
    table.add_column("Token", style="magenta")
    table.add_column("Pool", style="white")
    for idx, pool in enumerate(watchlist.pools, start=1):
        table.add_row(str(idx), pool.symbol, pool.name, pool.token_address, pool.pool_address)
    console.print(table)


@pools_app.command("add")
def add_pool(
    pool_address: str = typer.Argument(..., help="Pool (pair) address"),
    token_address: str = typer.Argument(..., help="Tracked token address"),
    symbol: str = typer.Option("", "--symbol"),
    name: str = typer.Option("", "--name"),
    path: str = typer.Option(None, "--path", help="Path to pools YAML file"),
) -> None:
    """Add a pool to the watchlist file."""
    from feedprobe.config import settings
    from feedprobe.watchlist import PoolEntry, load_watchlist, save_watchlist

    target = path or settings.watchlist_path
    watchlist = load_watchlist(target)
    if pool_address.lower() in watchlist.pool_tokens():
        console.print(f"[yellow]Pool already watched:[/yellow] {pool_address}")
        raise typer.Exit(1)
    watchlist.pools.append(
        PoolEntry(pool_address=pool_address, token_address=token_address, symbol=symbol, name=name)
    )
    save_watchlist(watchlist, target)
    console.print(f"[green]Pool added:[/green] {pool_address} -> {token_address}")


if __name__ == "__main__":
    app()
