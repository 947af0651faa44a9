from __future__ import annotations

from types import SimpleNamespace

import pytest

from src.finrelay.domain.ai_models import AIModelCreate, AIModelUpdate
from src.finrelay.infrastructure import model_registry_mongo, transcript_store_mongo
from src.finrelay.infrastructure.model_registry import ModelNotFoundError
from src.finrelay.infrastructure.model_registry_mongo import MongoModelRegistry
from src.finrelay.infrastructure.transcript_store_mongo import MongoTranscriptStore


def _matches(doc, query):
    return all(doc.get(k) == v for k, v in query.items())


class _Cursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def sort(self, keys):
        for key, direction in reversed(keys):
            self._docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return self

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        self._docs = self._docs[:n]
        return self

    def __iter__(self):
        return iter(self._docs)


class _FakeCollection:
    def __init__(self):
        self.docs = []

    def create_index(self, *args, **kwargs):
        return "ok"

    def insert_one(self, doc):
        self.docs.append(dict(doc, _id=len(self.docs) + 1))

    def find(self, query):
        return _Cursor(d for d in self.docs if _matches(d, query))

    def count_documents(self, query):
        return sum(1 for d in self.docs if _matches(d, query))

    def find_one(self, query, sort=None):
        docs = list(self.find(query).sort(sort)) if sort else [d for d in self.docs if _matches(d, query)]
        return docs[0] if docs else None

    def update_one(self, query, update):
        doc = self.find_one(query)
        if doc is None:
            return SimpleNamespace(modified_count=0)
        doc.update(update["$set"])
        return SimpleNamespace(modified_count=1)

    def find_one_and_update(self, query, update, upsert=False, return_document=None):
        doc = self.find_one(query)
        if doc is None:
            if not upsert:
                return None
            doc = dict(query)
            self.docs.append(doc)
        doc.update(update.get("$set", {}))
        for key, inc in update.get("$inc", {}).items():
            doc[key] = doc.get(key, 0) + inc
        return doc

    def delete_one(self, query):
        doc = self.find_one(query)
        if doc is not None:
            self.docs.remove(doc)
        return SimpleNamespace(deleted_count=1 if doc is not None else 0)


class _FakeDB(dict):
    def __missing__(self, name):
        coll = _FakeCollection()
        self[name] = coll
        return coll


def test_transcript_store_filters_deleted_and_pages(monkeypatch):
    monkeypatch.setattr(transcript_store_mongo, "connect", lambda: _FakeDB())
    store = MongoTranscriptStore()
    assert store._use_fallback() is False

    rows = [store.add_chat(1, 7, f"q{i}", f"a{i}") for i in range(3)]
    store.add_chat(1, 8, "other", "x")
    assert store.soft_delete_chat(rows[0].id) is True
    assert store.soft_delete_chat(rows[0].id) is False

    page = store.list_chats(1, user_id=7, page=1, page_size=1)
    assert page.total == 2
    assert [t.id for t in page.list] == [rows[2].id]
    assert store.get_chat(rows[0].id) is None

    analysis = store.add_analysis(1, 7, "2024-01-01", "2024-01-31", "ok")
    assert store.get_analysis(analysis.id).result == "ok"
    assert store.list_analyses(1).total == 1


def test_model_registry_crud(monkeypatch):
    monkeypatch.setattr(model_registry_mongo, "connect", lambda: _FakeDB())
    registry = MongoModelRegistry()

    a = registry.create(AIModelCreate(name="alpha", base_url="https://a.example.com/v1", api_key="k1"))
    b = registry.create(AIModelCreate(name="beta", base_url="https://b.example.com/v1", api_key="k2"))
    assert (a.sort_order, b.sort_order) == (0, 1)
    assert [m.name for m in registry.list()] == ["alpha", "beta"]

    updated = registry.update(a.id, AIModelUpdate(api_key="k1-rotated"))
    assert updated.secret_key == "k1-rotated"

    registry.delete(b.id)
    with pytest.raises(ModelNotFoundError):
        registry.get(b.id)
    with pytest.raises(ModelNotFoundError):
        registry.update(b.id, AIModelUpdate(name="gone"))


def test_unreachable_mongo_falls_back_to_memory(monkeypatch):
    monkeypatch.setattr(transcript_store_mongo, "connect", lambda: None)
    monkeypatch.setattr(model_registry_mongo, "connect", lambda: None)

    store = MongoTranscriptStore()
    registry = MongoModelRegistry()

    assert store._use_fallback() and registry._use_fallback()
    row = store.add_chat(1, 0, "q", "a")
    assert store.get_chat(row.id) is not None


def test_required_mongo_raises_when_unreachable(monkeypatch):
    monkeypatch.setattr(transcript_store_mongo, "connect", lambda: None)
    monkeypatch.setenv("FINRELAY_REQUIRE_MONGO", "true")

    with pytest.raises(RuntimeError):
        MongoTranscriptStore()
