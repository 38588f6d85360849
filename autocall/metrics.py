"""Health and metrics endpoints for Autocall."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

router = APIRouter()

DISPATCH_OUTCOMES = Counter("dispatch_outcomes_total", "Dial requests by outcome", ["status"])
CALLS_ENDED = Counter("calls_ended_total", "Call-ended signals by result", ["result"])
NUMBERS_IMPORTED = Counter("numbers_imported_total", "Numbers newly added by import")


@router.get("/healthz", response_class=PlainTextResponse)
def healthz() -> str:
    """Liveness probe."""

    return "ok"


@router.get("/metrics")
def metrics() -> PlainTextResponse:
    """Expose Prometheus metrics."""

    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
