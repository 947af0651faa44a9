from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
import logging
import os
from typing import Dict, List, Mapping, Optional, Protocol

from ..domain.ai_models import AIModelCreate, AIModelUpdate, ModelReference
from .mongo import store_impl


logger = logging.getLogger(__name__)


class ModelNotFoundError(KeyError):
    def __init__(self, model_id: int) -> None:
        super().__init__(f"AI model {model_id} not found")
        self.model_id = model_id


class DuplicateModelNameError(ValueError):
    def __init__(self, name: str) -> None:
        super().__init__(f"AI model name already exists: {name}")
        self.name = name


class ModelRegistry(Protocol):
    def get(self, model_id: int) -> ModelReference: ...

    def list(self) -> List[ModelReference]: ...

    def create(self, payload: AIModelCreate) -> ModelReference: ...

    def update(self, model_id: int, patch: AIModelUpdate) -> ModelReference: ...

    def delete(self, model_id: int) -> None: ...


# Env-configured providers used to seed an empty registry.
SEED_PROVIDERS: Dict[str, Dict[str, str]] = {
    "openai": {
        "api_key_env": "OPENAI_API_KEY",
        "base_url_env": "OPENAI_BASE_URL",
        "model_env": "OPENAI_MODEL",
        "default_model": "gpt-4o-mini",
        "default_base_url": "https://api.openai.com/v1",
    },
    "xai": {
        "api_key_env": "XAI_API_KEY",
        "base_url_env": "XAI_BASE_URL",
        "model_env": "XAI_MODEL",
        "default_model": "grok-2-latest",
        "default_base_url": "https://api.x.ai/v1",
    },
    "local": {
        "api_key_env": "LOCAL_API_KEY",
        "base_url_env": "LOCAL_BASE_URL",
        "model_env": "LOCAL_MODEL",
        "default_model": "llama3.1:8b",
        "default_base_url": "http://127.0.0.1:11434/v1",
    },
}


def seed_payloads_from_env(env: Optional[Mapping[str, str]] = None) -> List[AIModelCreate]:
    """Build registry entries for every provider whose API key is present in ``env``."""

    env = env if env is not None else os.environ
    out: List[AIModelCreate] = []
    for provider, cfg in SEED_PROVIDERS.items():
        api_key = (env.get(cfg["api_key_env"]) or "").strip()
        if not api_key:
            continue
        name = (env.get(cfg["model_env"]) or cfg["default_model"]).strip()
        base_url = (env.get(cfg["base_url_env"]) or cfg["default_base_url"]).strip()
        try:
            out.append(AIModelCreate(name=name, base_url=base_url, api_key=api_key))
        except ValueError:
            logger.warning("Skipping %s seed model: invalid configuration", provider)
    return out


@dataclass
class _Model:
    id: int
    name: str
    base_url: str
    secret_key: str
    sort_order: int
    created_at: str
    updated_at: str


class InMemoryModelRegistry:
    def __init__(self) -> None:
        self._models: Dict[int, _Model] = {}
        self._next_id = 1
        self._lock = RLock()

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def _to_reference(self, model: _Model) -> ModelReference:
        return ModelReference(**model.__dict__)

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        return any(m.name == name and m.id != exclude_id for m in self._models.values())

    def get(self, model_id: int) -> ModelReference:
        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                raise ModelNotFoundError(model_id)
            return self._to_reference(model)

    def list(self) -> List[ModelReference]:
        with self._lock:
            ordered = sorted(self._models.values(), key=lambda m: (m.sort_order, m.id))
            return [self._to_reference(m) for m in ordered]

    def create(self, payload: AIModelCreate) -> ModelReference:
        with self._lock:
            if self._name_taken(payload.name):
                raise DuplicateModelNameError(payload.name)
            now = self._now_iso()
            sort_order = max((m.sort_order for m in self._models.values()), default=-1) + 1
            model = _Model(
                id=self._next_id,
                name=payload.name,
                base_url=payload.base_url,
                secret_key=payload.api_key,
                sort_order=sort_order,
                created_at=now,
                updated_at=now,
            )
            self._models[model.id] = model
            self._next_id += 1
            return self._to_reference(model)

    def update(self, model_id: int, patch: AIModelUpdate) -> ModelReference:
        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                raise ModelNotFoundError(model_id)
            if patch.name is not None and self._name_taken(patch.name, exclude_id=model_id):
                raise DuplicateModelNameError(patch.name)
            if patch.name is not None:
                model.name = patch.name
            if patch.base_url is not None:
                model.base_url = patch.base_url
            if patch.api_key is not None:
                model.secret_key = patch.api_key
            model.updated_at = self._now_iso()
            return self._to_reference(model)

    def delete(self, model_id: int) -> None:
        with self._lock:
            if self._models.pop(model_id, None) is None:
                raise ModelNotFoundError(model_id)


_registry: ModelRegistry | None = None


def get_model_registry() -> ModelRegistry:
    global _registry
    if _registry is not None:
        return _registry
    if store_impl() == "mongo":
        from .model_registry_mongo import MongoModelRegistry

        _registry = MongoModelRegistry()
    else:
        _registry = InMemoryModelRegistry()
    payloads = seed_payloads_from_env()
    if payloads and not _registry.list():
        for payload in payloads:
            try:
                _registry.create(payload)
            except DuplicateModelNameError:
                continue
        logger.info("Seeded %d AI model(s) from environment", len(payloads))
    return _registry


def reset_model_registry() -> None:
    """Drop the cached registry (useful for tests)."""

    global _registry
    _registry = None
