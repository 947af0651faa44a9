import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _fresh_state(monkeypatch):
    """Isolate tests: in-memory stores, no env seeds, no rate limiting."""
    from src.finrelay.infrastructure.model_registry import SEED_PROVIDERS, reset_model_registry
    from src.finrelay.infrastructure.transcript_store import reset_transcript_store
    from src.finrelay.security.rate_limit import get_rate_limiter
    from src.finrelay.services.relay_service import reset_relay_service

    for cfg in SEED_PROVIDERS.values():
        monkeypatch.delenv(cfg["api_key_env"], raising=False)
    monkeypatch.delenv("DB_MODE", raising=False)
    monkeypatch.delenv("FINRELAY_PRESTREAM_ERRORS", raising=False)
    monkeypatch.setenv("FINRELAY_STORE_IMPL", "memory")
    monkeypatch.setenv("FINRELAY_RATE_LIMIT_DISABLED", "1")

    reset_model_registry()
    reset_transcript_store()
    reset_relay_service()
    get_rate_limiter().reset()
    yield
    reset_model_registry()
    reset_transcript_store()
    reset_relay_service()
    get_rate_limiter().reset()
