from __future__ import annotations

from datetime import UTC, datetime
import os
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING

from ..domain.transcript_models import (
    AnalysisTranscript,
    AnalysisTranscriptPage,
    ChatTranscript,
    ChatTranscriptPage,
)
from .mongo import connect, next_id
from .transcript_store import DEFAULT_PAGE_SIZE, InMemoryTranscriptStore, normalize_paging


class MongoTranscriptStore:
    """Mongo-backed transcript store with soft deletion via ``deleted_at``."""

    def __init__(self) -> None:
        self._fallback = InMemoryTranscriptStore()
        self._db = connect()
        self._chats = None
        self._analyses = None
        if self._db is None:
            if os.getenv("FINRELAY_REQUIRE_MONGO", "false").lower() in ("1", "true", "yes"):
                raise RuntimeError("Mongo transcript store required but not available")
            return
        self._chats = self._db["ai_chat_messages"]
        self._analyses = self._db["ai_analysis_histories"]
        for coll in (self._chats, self._analyses):
            coll.create_index("id", unique=True)
            coll.create_index([("model_id", ASCENDING), ("user_id", ASCENDING), ("created_at", DESCENDING)])
            coll.create_index("deleted_at")

    def _use_fallback(self) -> bool:
        return self._chats is None or self._analyses is None

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    @staticmethod
    def _strip(doc: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in doc.items() if k not in ("_id", "deleted_at")}

    def _page(self, coll, model_id: int, user_id: Optional[int], page: int, page_size: int):
        page, page_size = normalize_paging(page, page_size)
        query: Dict[str, Any] = {"model_id": model_id, "deleted_at": None}
        if user_id is not None:
            query["user_id"] = user_id
        total = coll.count_documents(query)
        cursor = (
            coll.find(query)
            .sort([("created_at", DESCENDING), ("id", DESCENDING)])
            .skip((page - 1) * page_size)
            .limit(page_size)
        )
        return total, page, page_size, [self._strip(doc) for doc in cursor]

    def add_chat(self, model_id: int, user_id: int, user_text: str, ai_text: str) -> ChatTranscript:
        if self._use_fallback():
            return self._fallback.add_chat(model_id, user_id, user_text, ai_text)
        doc = {
            "id": next_id(self._db, "ai_chat_messages"),
            "model_id": model_id,
            "user_id": user_id,
            "user_text": user_text,
            "ai_text": ai_text,
            "created_at": self._now_iso(),
            "deleted_at": None,
        }
        self._chats.insert_one(doc)
        return ChatTranscript(**self._strip(doc))

    def add_analysis(self, model_id: int, user_id: int, start_date: str, end_date: str, result: str) -> AnalysisTranscript:
        if self._use_fallback():
            return self._fallback.add_analysis(model_id, user_id, start_date, end_date, result)
        doc = {
            "id": next_id(self._db, "ai_analysis_histories"),
            "model_id": model_id,
            "user_id": user_id,
            "start_date": start_date,
            "end_date": end_date,
            "result": result,
            "created_at": self._now_iso(),
            "deleted_at": None,
        }
        self._analyses.insert_one(doc)
        return AnalysisTranscript(**self._strip(doc))

    def list_chats(self, model_id: int, user_id: Optional[int] = None, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> ChatTranscriptPage:
        if self._use_fallback():
            return self._fallback.list_chats(model_id, user_id, page, page_size)
        total, page, page_size, docs = self._page(self._chats, model_id, user_id, page, page_size)
        return ChatTranscriptPage(total=total, page=page, page_size=page_size, list=[ChatTranscript(**d) for d in docs])

    def list_analyses(self, model_id: int, user_id: Optional[int] = None, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> AnalysisTranscriptPage:
        if self._use_fallback():
            return self._fallback.list_analyses(model_id, user_id, page, page_size)
        total, page, page_size, docs = self._page(self._analyses, model_id, user_id, page, page_size)
        return AnalysisTranscriptPage(total=total, page=page, page_size=page_size, list=[AnalysisTranscript(**d) for d in docs])

    def get_chat(self, transcript_id: int) -> Optional[ChatTranscript]:
        if self._use_fallback():
            return self._fallback.get_chat(transcript_id)
        doc = self._chats.find_one({"id": transcript_id, "deleted_at": None})
        return ChatTranscript(**self._strip(doc)) if doc else None

    def get_analysis(self, transcript_id: int) -> Optional[AnalysisTranscript]:
        if self._use_fallback():
            return self._fallback.get_analysis(transcript_id)
        doc = self._analyses.find_one({"id": transcript_id, "deleted_at": None})
        return AnalysisTranscript(**self._strip(doc)) if doc else None

    def soft_delete_chat(self, transcript_id: int) -> bool:
        if self._use_fallback():
            return self._fallback.soft_delete_chat(transcript_id)
        result = self._chats.update_one(
            {"id": transcript_id, "deleted_at": None},
            {"$set": {"deleted_at": self._now_iso()}},
        )
        return result.modified_count == 1

    def soft_delete_analysis(self, transcript_id: int) -> bool:
        if self._use_fallback():
            return self._fallback.soft_delete_analysis(transcript_id)
        result = self._analyses.update_one(
            {"id": transcript_id, "deleted_at": None},
            {"$set": {"deleted_at": self._now_iso()}},
        )
        return result.modified_count == 1
