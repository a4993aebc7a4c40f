from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.processing import router as processing_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # API_KEY, API_PROVIDER, CASS_CONFIG_PATH, etc. from .env if present

app = FastAPI(title="Cass Processing API", version="0.1.0")

logging.getLogger("cass.processing").setLevel(logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

app.include_router(processing_router)
app.include_router(processing_router, prefix="/api")

# CORS for the desktop renderer dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "Cass Processing API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "queue": "in-memory",
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
