"""Pytest fixtures for Feed Probe tests."""

import asyncio
from collections.abc import Callable
from types import MappingProxyType

import pytest

from feedprobe.collector import Collector, SourceSnapshot
from feedprobe.config import ProbeConfig
from feedprobe.errors import TransportFailure
from feedprobe.ingest.filter import IdentityFilter
from feedprobe.ingest.observation import EntityKind, Normalized, Observation

BSC = "evm:56"

# Four.meme tokens and their PancakeSwap pools
TOKEN_A = "0x924fa68a0fc644485b8df8abfa0a41c2e7744444"
TOKEN_B = "0x82ec31d69b3c289e541b50e30681fd1acad24444"
POOL_A = "0x66f289de31eef70d52186729d2637ac978cfc56b"
POOL_B = "0xc33bacff9141da689875e6381c1932348ab4c5cb"
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter:
    """In-memory feed that yields canned events, optionally failing first."""

    def __init__(
        self,
        source_id: str,
        events: list | None = None,
        *,
        fail_with: str | None = None,
        decode_failures: int = 0,
        hold_open: bool = True,
    ):
        self.source_id = source_id
        self.events = list(events or [])
        self.fail_with = fail_with
        self.decode_failures = decode_failures
        self.hold_open = hold_open
        self.closed = False

    async def stream(self, on_decode_failure=None):
        if self.fail_with is not None:
            raise TransportFailure(self.source_id, self.fail_with)
        for _ in range(self.decode_failures):
            if on_decode_failure is not None:
                on_decode_failure()
        for event in self.events:
            await asyncio.sleep(0)
            yield event
        if self.hold_open:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


def observations_normalizer(raw) -> Normalized:
    """Normalizer for FakeAdapter events that already are Observations."""
    if isinstance(raw, Observation):
        return Normalized(observations=[raw])
    return Normalized(skipped=1)


async def yielding_sleep(seconds: float) -> None:
    """Stand-in for the window timer: lets feed tasks drain without waiting."""
    for _ in range(50):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity_filter() -> IdentityFilter:
    return IdentityFilter(suffix="4444", network=BSC)


@pytest.fixture
def collector(identity_filter: IdentityFilter, clock: FakeClock) -> Collector:
    """An open 30 second window over two sources."""
    c = Collector(identity_filter, 30.0, sources=["candidate", "reference"], now_fn=clock)
    c.open()
    return c


@pytest.fixture
def probe_config() -> ProbeConfig:
    return ProbeConfig(
        target_network=BSC,
        address_suffix="4444",
        window_seconds=30.0,
        threshold_percent=85.0,
        candidate="candidate",
        reference="reference",
        primary_kind=EntityKind.TOKEN,
    )


@pytest.fixture
def make_snapshot() -> Callable[..., SourceSnapshot]:
    """Build a SourceSnapshot directly from identity sets."""

    def _make(
        source_id: str,
        tokens=(),
        transactions=(),
        *,
        counters: dict | None = None,
        admitted: int | None = None,
        filtered_out: int = 0,
        available: bool = True,
        failure: str | None = None,
    ) -> SourceSnapshot:
        seen = {
            EntityKind.TOKEN: frozenset(key.lower() for key in tokens),
            EntityKind.TRANSACTION: frozenset(key.lower() for key in transactions),
        }
        if admitted is None:
            admitted = len(seen[EntityKind.TOKEN]) + len(seen[EntityKind.TRANSACTION])
        return SourceSnapshot(
            source_id=source_id,
            seen=MappingProxyType(seen),
            first_measures=MappingProxyType({kind: MappingProxyType({}) for kind in EntityKind}),
            counters=MappingProxyType(
                {kind: MappingProxyType(dict((counters or {}).get(kind, {}))) for kind in EntityKind}
            ),
            admitted=admitted,
            filtered_out=filtered_out,
            available=available,
            failure=failure,
        )

    return _make


def token(source_id: str, address: str, network: str = BSC, **measures) -> Observation:
    return Observation(source_id, EntityKind.TOKEN, address, network, measures=measures)


def trade(source_id: str, tx_hash: str, address: str, network: str = BSC, **measures) -> Observation:
    return Observation(source_id, EntityKind.TRANSACTION, tx_hash, network, token_key=address, measures=measures)
