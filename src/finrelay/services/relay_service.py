"""Wiring between the HTTP handlers and the relay core.

Handlers resolve the model and open the upstream stream *before* committing
to an SSE response, so configuration and provider errors can still be
returned as structured JSON. Everything after that point belongs to
:class:`~.relay.Relay`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import AsyncIterator, Dict, List, Optional

from starlette.concurrency import run_in_threadpool

from ..domain.ai_models import ModelReference
from ..infrastructure.model_registry import ModelRegistry, get_model_registry
from ..infrastructure.transcript_store import TranscriptStore, get_transcript_store
from .frames import StreamFrame
from .persistence import ChatOrigin, Origin, PersistencePolicy
from .relay import DisconnectProbe, Relay, failure_frames
from .upstream_client import RelayConfig, UpstreamClient, UpstreamError, UpstreamStream, build_request_body


LOG = logging.getLogger("finrelay.relay")


@dataclass(frozen=True)
class RelayTrigger:
    model_id: int
    prompt: str
    origin: Origin
    user_id: int = 0


def describe_upstream_error(exc: UpstreamError) -> str:
    if exc.status_code is None:
        return str(exc)
    return f"{exc} {exc.body}".strip()


class RelayService:
    def __init__(
        self,
        registry: Optional[ModelRegistry] = None,
        store: Optional[TranscriptStore] = None,
        client: Optional[UpstreamClient] = None,
        config: Optional[RelayConfig] = None,
    ) -> None:
        self.config = config or RelayConfig.from_env()
        self._registry = registry or get_model_registry()
        self._policy = PersistencePolicy(store or get_transcript_store())
        self._client = client or UpstreamClient(self.config)

    def resolve_model(self, model_id: int) -> ModelReference:
        return self._registry.get(model_id)

    def build_messages(self, trigger: RelayTrigger) -> List[Dict[str, str]]:
        if isinstance(trigger.origin, ChatOrigin):
            return [
                {"role": "system", "content": self.config.chat_system_prompt},
                {"role": "user", "content": trigger.prompt},
            ]
        return [{"role": "user", "content": trigger.prompt}]

    def request_body(self, model: ModelReference, trigger: RelayTrigger) -> Dict[str, object]:
        temperature = self.config.chat_temperature if isinstance(trigger.origin, ChatOrigin) else None
        return build_request_body(model, self.build_messages(trigger), temperature=temperature)

    def open_upstream(self, model: ModelReference, trigger: RelayTrigger) -> UpstreamStream:
        """Blocking; raises :class:`UpstreamError` before any frame is produced."""

        try:
            return self._client.open_stream(model, self.request_body(model, trigger))
        except UpstreamError as exc:
            LOG.warning(
                "upstream_open_failed",
                extra={"model_id": model.id, "status_code": exc.status_code, "origin": trigger.origin.kind},
            )
            raise

    def relay(
        self,
        model: ModelReference,
        trigger: RelayTrigger,
        stream: UpstreamStream,
        is_disconnected: DisconnectProbe,
    ) -> Relay:
        def _persist(output: str) -> None:
            self._policy.persist(
                model_id=model.id,
                user_id=trigger.user_id,
                origin=trigger.origin,
                output=output,
            )

        return Relay(
            stream,
            is_disconnected=is_disconnected,
            on_complete=_persist,
            origin=trigger.origin.kind,
            model_id=model.id,
            user_id=trigger.user_id,
        )

    async def open_and_relay(
        self,
        model: ModelReference,
        trigger: RelayTrigger,
        is_disconnected: DisconnectProbe,
    ) -> AsyncIterator[StreamFrame]:
        """Open the upstream after the SSE response has committed.

        Provider errors become an ``error`` frame followed by ``done``.
        """

        try:
            stream = await run_in_threadpool(self.open_upstream, model, trigger)
        except UpstreamError as exc:
            async for frame in failure_frames(describe_upstream_error(exc)):
                yield frame
            return
        async for frame in self.relay(model, trigger, stream, is_disconnected).frames():
            yield frame


_service: RelayService | None = None


def get_relay_service() -> RelayService:
    global _service
    if _service is None:
        _service = RelayService()
    return _service


def reset_relay_service() -> None:
    global _service
    _service = None
