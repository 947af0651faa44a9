from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.finrelay.domain.ai_models import AIModelCreate, AIModelUpdate
from src.finrelay.infrastructure.model_registry import (
    DuplicateModelNameError,
    InMemoryModelRegistry,
    ModelNotFoundError,
    get_model_registry,
    reset_model_registry,
    seed_payloads_from_env,
)


def _create(registry, name, url="https://api.example.com/v1", key="sk"):
    return registry.create(AIModelCreate(name=name, base_url=url, api_key=key))


def test_create_assigns_increasing_sort_order_and_lists_in_order():
    registry = InMemoryModelRegistry()
    a = _create(registry, "alpha")
    b = _create(registry, "beta")

    assert (a.sort_order, b.sort_order) == (0, 1)
    assert [m.name for m in registry.list()] == ["alpha", "beta"]


def test_get_returns_secret_but_never_serializes_it():
    registry = InMemoryModelRegistry()
    created = _create(registry, "alpha", key="sk-secret")

    ref = registry.get(created.id)

    assert ref.secret_key == "sk-secret"
    assert "secret_key" not in ref.model_dump()
    assert "sk-secret" not in repr(ref)


def test_unknown_model_raises_not_found():
    registry = InMemoryModelRegistry()
    with pytest.raises(ModelNotFoundError) as info:
        registry.get(42)
    assert info.value.model_id == 42
    with pytest.raises(ModelNotFoundError):
        registry.delete(42)


def test_names_are_unique_on_create_and_update():
    registry = InMemoryModelRegistry()
    _create(registry, "alpha")
    beta = _create(registry, "beta")

    with pytest.raises(DuplicateModelNameError):
        _create(registry, "alpha")
    with pytest.raises(DuplicateModelNameError):
        registry.update(beta.id, AIModelUpdate(name="alpha"))

    renamed = registry.update(beta.id, AIModelUpdate(name="beta", api_key="sk-new"))
    assert renamed.name == "beta"
    assert registry.get(beta.id).secret_key == "sk-new"


def test_base_url_must_be_http():
    with pytest.raises(ValidationError):
        AIModelCreate(name="x", base_url="ftp://example.com", api_key="k")
    with pytest.raises(ValidationError):
        AIModelUpdate(base_url="not a url")


def test_seed_payloads_only_for_configured_keys():
    payloads = seed_payloads_from_env({"XAI_API_KEY": "xk", "OPENAI_API_KEY": "  "})
    assert [(p.name, p.base_url) for p in payloads] == [("grok-2-latest", "https://api.x.ai/v1")]


def test_factory_seeds_empty_registry_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    reset_model_registry()

    registry = get_model_registry()

    assert [m.name for m in registry.list()] == ["gpt-4o"]
    assert get_model_registry() is registry
