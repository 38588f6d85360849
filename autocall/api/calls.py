"""Call dispatch endpoints driven by the handset UI and its call observer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from autocall import settings
from autocall.dispatch import DispatchOutcome, DispatchSession
from autocall.logging_utils import logger
from autocall.metrics import CALLS_ENDED, DISPATCH_OUTCOMES
from autocall.numbers import normalize_number

router = APIRouter(prefix="/v1/calls", tags=["calls"])


class NextCallRequest(BaseModel):
    """Request for the next queued number; carries the rotation decision when asked."""

    model_config = ConfigDict(populate_by_name=True)

    confirm_rotation: Optional[bool] = Field(default=None, alias="confirmRotation")


class DialRequest(BaseModel):
    number: str = Field(..., min_length=3, max_length=32)


class DispatchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    number: Optional[str] = None
    record_id: Optional[int] = Field(default=None, alias="recordId")
    reason: Optional[str] = None
    rotated: bool = False


class CallEndedResponse(BaseModel):
    result: str


class SessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state: str
    active_record_id: Optional[int] = Field(default=None, alias="activeRecordId")
    last_dialed_number: Optional[str] = Field(default=None, alias="lastDialedNumber")
    dialed_at: Optional[datetime] = Field(default=None, alias="dialedAt")
    last_result: Optional[str] = Field(default=None, alias="lastResult")


def get_dispatch_session(request: Request) -> DispatchSession:
    return request.app.state.session


def require_call_capability(request: Request) -> None:
    """Reject dial requests while the device may not place calls."""

    gate = request.app.state.capability_gate
    if not gate():
        logger.warning("Dial request refused: calling capability not granted")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Phone permission not granted")


def _respond(outcome: DispatchOutcome) -> DispatchResponse:
    DISPATCH_OUTCOMES.labels(status=outcome.status.value).inc()
    return DispatchResponse(
        status=outcome.status.value,
        number=outcome.number,
        record_id=outcome.record_id,
        reason=outcome.reason,
        rotated=outcome.rotated,
    )


@router.post("/next", response_model=DispatchResponse, dependencies=[Depends(require_call_capability)])
async def call_next(
    payload: NextCallRequest | None = None,
    session: DispatchSession = Depends(get_dispatch_session),
) -> DispatchResponse:
    """Dial the next uncalled number, or report why nothing was dialled."""

    confirm = payload.confirm_rotation if payload else None
    return _respond(await session.request_next_call(confirm_rotation=confirm))


@router.post("/dial", response_model=DispatchResponse, dependencies=[Depends(require_call_capability)])
async def call_specific(
    payload: DialRequest,
    session: DispatchSession = Depends(get_dispatch_session),
) -> DispatchResponse:
    """Dial a specific number (manual per-row dial)."""

    number = normalize_number(payload.number.strip(), settings.get_default_region())
    if number is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid phone number")
    return _respond(await session.request_specific_call(number))


@router.post("/redial", response_model=DispatchResponse, dependencies=[Depends(require_call_capability)])
async def call_redial(session: DispatchSession = Depends(get_dispatch_session)) -> DispatchResponse:
    """Dial the last dispatched number again."""

    return _respond(await session.redial())


@router.post("/ended", response_model=CallEndedResponse)
async def call_ended(session: DispatchSession = Depends(get_dispatch_session)) -> CallEndedResponse:
    """Call-ended signal from the handset (app resumed or phone state idle)."""

    result = await session.external_call_ended()
    CALLS_ENDED.labels(result=result.value).inc()
    return CallEndedResponse(result=result.value)


@router.get("/session", response_model=SessionResponse)
async def session_snapshot(session: DispatchSession = Depends(get_dispatch_session)) -> SessionResponse:
    snap = session.snapshot()
    return SessionResponse(
        state=snap.state.value,
        active_record_id=snap.active_record_id,
        last_dialed_number=snap.last_dialed_number,
        dialed_at=snap.dialed_at,
        last_result=snap.last_result.value if snap.last_result else None,
    )
