from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
import logging
from typing import Dict, List, Optional, Protocol, Tuple

from ..domain.transcript_models import (
    AnalysisTranscript,
    AnalysisTranscriptPage,
    ChatTranscript,
    ChatTranscriptPage,
)
from .mongo import store_impl


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def normalize_paging(page: Optional[int], page_size: Optional[int]) -> Tuple[int, int]:
    page = page if page and page > 0 else 1
    page_size = page_size if page_size and page_size > 0 else DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)


class TranscriptStore(Protocol):
    def add_chat(self, model_id: int, user_id: int, user_text: str, ai_text: str) -> ChatTranscript: ...

    def add_analysis(self, model_id: int, user_id: int, start_date: str, end_date: str, result: str) -> AnalysisTranscript: ...

    def list_chats(self, model_id: int, user_id: Optional[int] = None, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> ChatTranscriptPage: ...

    def list_analyses(self, model_id: int, user_id: Optional[int] = None, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> AnalysisTranscriptPage: ...

    def get_chat(self, transcript_id: int) -> Optional[ChatTranscript]: ...

    def get_analysis(self, transcript_id: int) -> Optional[AnalysisTranscript]: ...

    def soft_delete_chat(self, transcript_id: int) -> bool: ...

    def soft_delete_analysis(self, transcript_id: int) -> bool: ...


@dataclass
class _Chat:
    id: int
    model_id: int
    user_id: int
    user_text: str
    ai_text: str
    created_at: str
    deleted_at: Optional[str] = None


@dataclass
class _Analysis:
    id: int
    model_id: int
    user_id: int
    start_date: str
    end_date: str
    result: str
    created_at: str
    deleted_at: Optional[str] = None


class InMemoryTranscriptStore:
    def __init__(self) -> None:
        self._chats: Dict[int, _Chat] = {}
        self._analyses: Dict[int, _Analysis] = {}
        self._next_chat_id = 1
        self._next_analysis_id = 1
        self._lock = RLock()

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def _chat_model(self, row: _Chat) -> ChatTranscript:
        data = dict(row.__dict__)
        data.pop("deleted_at")
        return ChatTranscript(**data)

    def _analysis_model(self, row: _Analysis) -> AnalysisTranscript:
        data = dict(row.__dict__)
        data.pop("deleted_at")
        return AnalysisTranscript(**data)

    def _select(self, rows, model_id: int, user_id: Optional[int], page: int, page_size: int):
        page, page_size = normalize_paging(page, page_size)
        matches = [
            r
            for r in rows
            if r.deleted_at is None and r.model_id == model_id and (user_id is None or r.user_id == user_id)
        ]
        # Newest first; ids break ties between rows created in the same instant
        matches.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        offset = (page - 1) * page_size
        return len(matches), page, page_size, matches[offset : offset + page_size]

    def add_chat(self, model_id: int, user_id: int, user_text: str, ai_text: str) -> ChatTranscript:
        with self._lock:
            row = _Chat(
                id=self._next_chat_id,
                model_id=model_id,
                user_id=user_id,
                user_text=user_text,
                ai_text=ai_text,
                created_at=self._now_iso(),
            )
            self._chats[row.id] = row
            self._next_chat_id += 1
            return self._chat_model(row)

    def add_analysis(self, model_id: int, user_id: int, start_date: str, end_date: str, result: str) -> AnalysisTranscript:
        with self._lock:
            row = _Analysis(
                id=self._next_analysis_id,
                model_id=model_id,
                user_id=user_id,
                start_date=start_date,
                end_date=end_date,
                result=result,
                created_at=self._now_iso(),
            )
            self._analyses[row.id] = row
            self._next_analysis_id += 1
            return self._analysis_model(row)

    def list_chats(self, model_id: int, user_id: Optional[int] = None, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> ChatTranscriptPage:
        with self._lock:
            total, page, page_size, rows = self._select(self._chats.values(), model_id, user_id, page, page_size)
            return ChatTranscriptPage(
                total=total,
                page=page,
                page_size=page_size,
                list=[self._chat_model(r) for r in rows],
            )

    def list_analyses(self, model_id: int, user_id: Optional[int] = None, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> AnalysisTranscriptPage:
        with self._lock:
            total, page, page_size, rows = self._select(self._analyses.values(), model_id, user_id, page, page_size)
            return AnalysisTranscriptPage(
                total=total,
                page=page,
                page_size=page_size,
                list=[self._analysis_model(r) for r in rows],
            )

    def get_chat(self, transcript_id: int) -> Optional[ChatTranscript]:
        with self._lock:
            row = self._chats.get(transcript_id)
            if row is None or row.deleted_at is not None:
                return None
            return self._chat_model(row)

    def get_analysis(self, transcript_id: int) -> Optional[AnalysisTranscript]:
        with self._lock:
            row = self._analyses.get(transcript_id)
            if row is None or row.deleted_at is not None:
                return None
            return self._analysis_model(row)

    def soft_delete_chat(self, transcript_id: int) -> bool:
        with self._lock:
            row = self._chats.get(transcript_id)
            if row is None or row.deleted_at is not None:
                return False
            row.deleted_at = self._now_iso()
            return True

    def soft_delete_analysis(self, transcript_id: int) -> bool:
        with self._lock:
            row = self._analyses.get(transcript_id)
            if row is None or row.deleted_at is not None:
                return False
            row.deleted_at = self._now_iso()
            return True


_store: TranscriptStore | None = None


def get_transcript_store() -> TranscriptStore:
    global _store
    if _store is not None:
        return _store
    impl = store_impl()
    if impl == "mongo":
        from .transcript_store_mongo import MongoTranscriptStore

        _store = MongoTranscriptStore()
    else:
        _store = InMemoryTranscriptStore()
    logger.info("Using %s transcript store", impl)
    return _store


def reset_transcript_store() -> None:
    """Drop the cached store (useful for tests)."""

    global _store
    _store = None
