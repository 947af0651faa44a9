"""Relay loop between an upstream streaming response and a downstream SSE client.

The relay is a four-state machine::

    STREAMING -> COMPLETED   ([DONE] sentinel, or clean end of stream)
    STREAMING -> CANCELLED   (downstream disconnected)
    STREAMING -> FAILED      (read fault after streaming began)

Only COMPLETED invokes the completion hook (transcript persistence) and emits
the ``done`` frame. The downstream disconnect probe is polled before every
read, so cancellation is observed with at most one line of latency. Reads run
in the worker threadpool; the event loop only ever waits on them.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, List, Optional

from starlette.concurrency import run_in_threadpool

from ..observability.metrics import ACTIVE_RELAYS, RELAY_DELTAS, RELAY_OUTCOMES
from .frames import DeltaLine, StreamFrame, TerminalLine, classify_line
from .upstream_client import UpstreamReadError, UpstreamStream


LOG = logging.getLogger("finrelay.relay")

DisconnectProbe = Callable[[], Awaitable[bool]]
CompletionHook = Callable[[str], Any]

_EOF = object()


class RelayState(str, Enum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


def _next_line(lines: Iterator[bytes]) -> Any:
    return next(lines, _EOF)


class Relay:
    def __init__(
        self,
        stream: UpstreamStream,
        *,
        is_disconnected: DisconnectProbe,
        on_complete: CompletionHook,
        origin: str = "chat",
        model_id: Optional[int] = None,
        user_id: int = 0,
    ) -> None:
        self._stream = stream
        self._is_disconnected = is_disconnected
        self._on_complete = on_complete
        self.origin = origin
        self.model_id = model_id
        self.user_id = user_id
        self.state = RelayState.STREAMING
        self.deltas = 0
        self._chunks: List[str] = []

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def _finish(self, state: RelayState, **extra: Any) -> None:
        self.state = state
        RELAY_OUTCOMES.labels(origin=self.origin, state=state.value).inc()
        fields = {
            "origin": self.origin,
            "model_id": self.model_id,
            "user_id": self.user_id,
            "deltas": self.deltas,
            "chars": sum(len(c) for c in self._chunks),
            **extra,
        }
        if state is RelayState.FAILED:
            LOG.warning("relay_read_fault", extra=fields)
        elif state is RelayState.CANCELLED:
            LOG.info("relay_cancelled", extra=fields)
        else:
            LOG.info("relay_completed", extra=fields)

    async def frames(self) -> AsyncIterator[StreamFrame]:
        lines = self._stream.iter_lines()
        ACTIVE_RELAYS.labels(origin=self.origin).inc()
        try:
            while self.state is RelayState.STREAMING:
                if await self._is_disconnected():
                    self._finish(RelayState.CANCELLED)
                    break
                try:
                    raw = await run_in_threadpool(_next_line, lines)
                except UpstreamReadError as exc:
                    self._finish(RelayState.FAILED, err=str(exc))
                    break
                if raw is _EOF:
                    # Some compatible providers close the stream without [DONE]
                    self._finish(RelayState.COMPLETED, ending="eof")
                    break
                parsed = classify_line(raw)
                if isinstance(parsed, DeltaLine):
                    self._chunks.append(parsed.content)
                    self.deltas += 1
                    RELAY_DELTAS.labels(origin=self.origin).inc()
                    yield StreamFrame.delta(parsed.content)
                elif isinstance(parsed, TerminalLine):
                    self._finish(RelayState.COMPLETED, ending="sentinel")

            if self.state is RelayState.COMPLETED:
                await run_in_threadpool(self._on_complete, self.text)
                yield StreamFrame.done()
        finally:
            if self.state is RelayState.STREAMING:
                # Consumer went away mid-yield
                self._finish(RelayState.CANCELLED, ending="abandoned")
            self._stream.close()
            ACTIVE_RELAYS.labels(origin=self.origin).dec()


async def failure_frames(message: str) -> AsyncIterator[StreamFrame]:
    yield StreamFrame.error(message)
    yield StreamFrame.done()


async def encode_sse(frames: AsyncIterator[StreamFrame]) -> AsyncIterator[str]:
    async for frame in frames:
        yield frame.to_sse()
