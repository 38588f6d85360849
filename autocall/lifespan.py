"""FastAPI lifespan context for the Autocall application."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI

from . import settings
from .dialers import build_dialer
from .dispatch import DispatchSession
from .errors import StorageError
from .logging_utils import logger
from .selector import QueueSelector
from .store import NumberStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the number store and own the device's single dispatch session."""

    project_name = settings.get_project_name()
    stamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
    logger.info(
        "\n=============================="
        "==============================\n"
        "  %s service reload @ %s\n"
        "=============================="
        "==============================",
        project_name.title(),
        stamp,
    )

    try:
        store = NumberStore.open(settings.get_sqlite_url())
    except StorageError:
        logger.critical("Cannot open the number store; refusing to start", exc_info=True)
        raise

    dialer = getattr(app.state, "dialer", None) or build_dialer(settings.get_dialer_config())
    session = DispatchSession(
        QueueSelector(store),
        dialer,
        call_timeout_seconds=settings.get_call_timeout_seconds(),
    )
    if getattr(app.state, "capability_gate", None) is None:
        app.state.capability_gate = settings.calls_permitted

    app.state.store = store
    app.state.dialer = dialer
    app.state.session = session

    # Records dialled before a crash were never marked; they are simply selected again.
    logger.info("Number store ready: %s", store.stats().as_dict())

    try:
        yield
    finally:
        await session.close()
        store.close()
