from __future__ import annotations

from datetime import UTC, datetime
import os
from typing import Any, Dict, List

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..domain.ai_models import AIModelCreate, AIModelUpdate, ModelReference
from .model_registry import DuplicateModelNameError, InMemoryModelRegistry, ModelNotFoundError
from .mongo import connect, next_id


class MongoModelRegistry:
    """Mongo-backed model registry.

    If Mongo is unreachable and FINRELAY_REQUIRE_MONGO is not true, operations
    fall back to an internal in-memory registry.
    """

    def __init__(self) -> None:
        self._fallback = InMemoryModelRegistry()
        self._db = connect()
        self._models = None
        if self._db is None:
            if os.getenv("FINRELAY_REQUIRE_MONGO", "false").lower() in ("1", "true", "yes"):
                raise RuntimeError("Mongo model registry required but not available")
            return
        self._models = self._db["ai_models"]
        self._models.create_index("id", unique=True)
        self._models.create_index("name", unique=True)
        self._models.create_index([("sort_order", ASCENDING), ("id", ASCENDING)])

    def _use_fallback(self) -> bool:
        return self._models is None

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def _to_reference(self, doc: Dict[str, Any]) -> ModelReference:
        return ModelReference(
            id=int(doc["id"]),
            name=doc["name"],
            base_url=doc["base_url"],
            secret_key=doc["secret_key"],
            sort_order=int(doc.get("sort_order", 0)),
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )

    def get(self, model_id: int) -> ModelReference:
        if self._use_fallback():
            return self._fallback.get(model_id)
        doc = self._models.find_one({"id": model_id})
        if not doc:
            raise ModelNotFoundError(model_id)
        return self._to_reference(doc)

    def list(self) -> List[ModelReference]:
        if self._use_fallback():
            return self._fallback.list()
        cursor = self._models.find({}).sort([("sort_order", ASCENDING), ("id", ASCENDING)])
        return [self._to_reference(doc) for doc in cursor]

    def create(self, payload: AIModelCreate) -> ModelReference:
        if self._use_fallback():
            return self._fallback.create(payload)
        last = self._models.find_one({}, sort=[("sort_order", -1)])
        sort_order = int(last.get("sort_order", -1)) + 1 if last else 0
        now = self._now_iso()
        doc = {
            "id": next_id(self._db, "ai_models"),
            "name": payload.name,
            "base_url": payload.base_url,
            "secret_key": payload.api_key,
            "sort_order": sort_order,
            "created_at": now,
            "updated_at": now,
        }
        try:
            self._models.insert_one(doc)
        except DuplicateKeyError as exc:
            raise DuplicateModelNameError(payload.name) from exc
        return self._to_reference(doc)

    def update(self, model_id: int, patch: AIModelUpdate) -> ModelReference:
        if self._use_fallback():
            return self._fallback.update(model_id, patch)
        changes: Dict[str, Any] = {"updated_at": self._now_iso()}
        if patch.name is not None:
            changes["name"] = patch.name
        if patch.base_url is not None:
            changes["base_url"] = patch.base_url
        if patch.api_key is not None:
            changes["secret_key"] = patch.api_key
        try:
            doc = self._models.find_one_and_update(
                {"id": model_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise DuplicateModelNameError(str(patch.name)) from exc
        if not doc:
            raise ModelNotFoundError(model_id)
        return self._to_reference(doc)

    def delete(self, model_id: int) -> None:
        if self._use_fallback():
            return self._fallback.delete(model_id)
        result = self._models.delete_one({"id": model_id})
        if result.deleted_count == 0:
            raise ModelNotFoundError(model_id)
