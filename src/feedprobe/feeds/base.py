"""Transport adapter base types for live feeds."""

from __future__ import annotations

import asyncio
import gzip
import json
import zlib
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import structlog
import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, WebSocketException

from feedprobe.errors import DecodeFailure, TransportFailure
from feedprobe.ingest.normalize import Normalizer
from feedprobe.ingest.observation import RawEvent

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = structlog.get_logger()

DecodeHook = Callable[[], None]


class FeedAdapter(Protocol):
    @property
    def source_id(self) -> str: ...

    def stream(self, on_decode_failure: DecodeHook | None = None) -> AsyncIterator[RawEvent]: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class FeedBinding:
    """An adapter paired with the normalizer for its message shapes."""

    adapter: FeedAdapter
    normalizer: Normalizer

    @property
    def source_id(self) -> str:
        return self.adapter.source_id


def decode_frame(frame: str | bytes) -> Any:
    """Decode a text or binary frame; binary frames may be gzip-compressed JSON."""
    if isinstance(frame, str):
        try:
            return json.loads(frame)
        except json.JSONDecodeError as exc:
            raise DecodeFailure(f"Invalid JSON frame: {exc}") from exc

    try:
        return json.loads(frame.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        pass

    try:
        return json.loads(gzip.decompress(frame).decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeFailure(f"Undecodable binary frame ({len(frame)} bytes): {exc}") from exc


class WebSocketFeed:
    """Shared connect / acknowledge / stream loop for websocket feeds.

    Subclasses describe their protocol through ``_handshake_messages``,
    ``_is_ack``, ``_after_ack`` and ``_unwrap``. Nothing received before the
    acknowledgment is ever yielded.
    """

    subprotocols: list[str] | None = None
    # Whether the acknowledgment message itself carries entities (e.g. a bulk snapshot).
    ack_is_event: bool = False

    def __init__(self, url: str, *, source_id: str, connect_timeout: float = 10.0):
        self.url = url
        self._source_id = source_id
        self.connect_timeout = connect_timeout
        self._ws: ClientConnection | None = None
        self._acked = False
        self._closing = False
        self._pending: list[RawEvent] = []
        self._early_decode_failures = 0

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def acknowledged(self) -> bool:
        return self._acked

    async def __aenter__(self) -> WebSocketFeed:
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def _open_socket(self) -> ClientConnection:
        return await websockets.connect(
            self.url,
            subprotocols=self.subprotocols,
            ping_interval=30,
            ping_timeout=10,
            max_size=None,
        )

    async def connect(self) -> None:
        """Open the socket and complete the subscribe handshake within ``connect_timeout``."""
        if self._acked:
            return

        logger.info("Connecting to feed", source=self.source_id, url=self.url)
        try:
            async with asyncio.timeout(self.connect_timeout):
                self._ws = await self._open_socket()
                for message in self._handshake_messages():
                    await self._ws.send(json.dumps(message))
                await self._await_ack()
                await self._after_ack(self._ws)
        except TransportFailure:
            await self._abort()
            raise
        except TimeoutError:
            await self._abort()
            raise TransportFailure(self.source_id, f"handshake timed out after {self.connect_timeout}s")
        except (OSError, WebSocketException) as exc:
            await self._abort()
            raise TransportFailure(self.source_id, f"connection failed: {exc}") from exc

        logger.info("Feed connected", source=self.source_id)

    async def _await_ack(self) -> None:
        assert self._ws is not None
        while not self._acked:
            frame = await self._ws.recv()
            try:
                message = decode_frame(frame)
            except DecodeFailure as exc:
                logger.debug("Dropping undecodable frame", source=self.source_id, error=str(exc))
                self._early_decode_failures += 1
                continue
            if not isinstance(message, dict):
                continue
            self._raise_on_rejection(message)
            if self._is_ack(message):
                self._acked = True
                if self.ack_is_event:
                    self._pending.append(message)
            else:
                logger.debug("Ignoring frame before acknowledgment", source=self.source_id, type=message.get("type"))

    async def stream(self, on_decode_failure: DecodeHook | None = None) -> AsyncIterator[RawEvent]:
        """Yield decoded events until the socket closes or ``close()`` is called."""
        if not self._acked:
            await self.connect()
        assert self._ws is not None

        if on_decode_failure is not None:
            for _ in range(self._early_decode_failures):
                on_decode_failure()
        self._early_decode_failures = 0
        while self._pending:
            yield self._pending.pop(0)

        try:
            async for frame in self._ws:
                try:
                    message = decode_frame(frame)
                except DecodeFailure as exc:
                    logger.debug("Dropping undecodable frame", source=self.source_id, error=str(exc))
                    if on_decode_failure is not None:
                        on_decode_failure()
                    continue
                if not isinstance(message, dict):
                    continue
                event = await self._unwrap(self._ws, message)
                if event is not None:
                    yield event
        except ConnectionClosedOK:
            pass
        except ConnectionClosedError as exc:
            if not self._closing:
                raise TransportFailure(self.source_id, f"connection closed unexpectedly: {exc}") from exc

        logger.info("Feed stream ended", source=self.source_id)

    async def close(self) -> None:
        self._closing = True
        self._acked = False
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        logger.debug("Feed closed", source=self.source_id)

    async def _abort(self) -> None:
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, WebSocketException):
                pass
            self._ws = None

    # Protocol hooks

    def _handshake_messages(self) -> list[dict[str, Any]]:
        return []

    def _is_ack(self, message: dict[str, Any]) -> bool:
        raise NotImplementedError

    def _raise_on_rejection(self, message: dict[str, Any]) -> None:
        """Raise ``TransportFailure`` if the server refused the subscription."""

    async def _after_ack(self, ws: ClientConnection) -> None:
        return None

    async def _unwrap(self, ws: ClientConnection, message: dict[str, Any]) -> RawEvent | None:
        return message
