from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
import os
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.ai_analysis import admin_router as admin_analysis_router, router as analysis_router
from .routers.ai_chat import admin_router as admin_chat_router, router as chat_router
from .routers.ai_models import admin_router as admin_models_router, router as models_router
from ..infrastructure.mongo import store_impl
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Provider seeds (OPENAI_API_KEY, XAI_API_KEY, ...) and JWT_SECRET may live in .env

app = FastAPI(title="FinRelay AI API", version="0.1.0")

logging.basicConfig(level=logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

ROUTERS = (
    models_router,
    chat_router,
    analysis_router,
    admin_models_router,
    admin_chat_router,
    admin_analysis_router,
)

for _router in ROUTERS:
    app.include_router(_router)
    # Same surface under /api for clients behind the gateway prefix
    app.include_router(_router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("FINRELAY_CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "FinRelay AI API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "store": store_impl(),
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
