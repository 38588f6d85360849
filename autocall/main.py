"""Autocall FastAPI application entrypoint."""

from __future__ import annotations

from typing import Callable

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from autocall.api import calls, numbers
from autocall.dialers import Dialer
from autocall.errors import StorageError
from autocall.lifespan import lifespan
from autocall.logging_utils import logger
from autocall.metrics import router as metrics_router
from autocall.settings import get_project_name


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Number store unavailable", "error": str(exc)},
    )


def create_app(
    *,
    dialer: Dialer | None = None,
    capability_gate: Callable[[], bool] | None = None,
) -> FastAPI:
    """Construct the FastAPI application and mount routers.

    ``dialer`` and ``capability_gate`` override the configured ones.
    """

    title = get_project_name().replace("-", " ").title()
    application = FastAPI(title=title, lifespan=lifespan)
    application.state.dialer = dialer
    application.state.capability_gate = capability_gate

    application.add_exception_handler(StorageError, _storage_error_handler)

    application.include_router(metrics_router)
    application.include_router(numbers.router)
    application.include_router(calls.router)

    return application


app = create_app()
