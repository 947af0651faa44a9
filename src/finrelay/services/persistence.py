from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Union

from ..domain.transcript_models import AnalysisTranscript, ChatTranscript
from ..infrastructure.transcript_store import TranscriptStore


LOG = logging.getLogger("finrelay.relay")


@dataclass(frozen=True)
class ChatOrigin:
    message: str

    kind = "chat"


@dataclass(frozen=True)
class AnalysisOrigin:
    start_date: str
    end_date: str

    kind = "analysis"


Origin = Union[ChatOrigin, AnalysisOrigin]


class PersistencePolicy:
    """Writes the transcript of a relay that completed normally.

    Storage failures are logged and swallowed: by the time this runs the client
    stream has already succeeded and must not be reopened or retried.
    """

    def __init__(self, store: TranscriptStore) -> None:
        self._store = store

    def persist(
        self,
        *,
        model_id: int,
        user_id: int,
        origin: Origin,
        output: str,
    ) -> Optional[Union[ChatTranscript, AnalysisTranscript]]:
        try:
            if isinstance(origin, ChatOrigin):
                return self._store.add_chat(model_id, user_id, origin.message, output)
            return self._store.add_analysis(model_id, user_id, origin.start_date, origin.end_date, output)
        except Exception:
            LOG.exception(
                "transcript_persist_failed",
                extra={"model_id": model_id, "user_id": user_id, "origin": origin.kind},
            )
            return None
