"""Endpoints for importing and inspecting the number store."""

from __future__ import annotations

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from autocall import settings
from autocall.metrics import NUMBERS_IMPORTED
from autocall.numbers import import_text
from autocall.store import NumberStore

MAX_IMPORT_CHARS = 200_000

router = APIRouter(prefix="/v1/numbers", tags=["numbers"])

# Handlers are plain functions so FastAPI runs the SQLite work in its threadpool.


class ImportRequest(BaseModel):
    """Free text pasted by the user."""

    text: str = Field(..., max_length=MAX_IMPORT_CHARS)


class ImportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    candidates: int
    valid: int
    inserted: int
    duplicates: int


class NumberEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    number: str
    called: bool
    created_at: datetime = Field(..., alias="createdAt")


class StatsResponse(BaseModel):
    total: int
    called: int
    remaining: int


def get_store(request: Request) -> NumberStore:
    return request.app.state.store


@router.post("/import", response_model=ImportResponse)
def import_numbers(payload: ImportRequest, store: NumberStore = Depends(get_store)) -> ImportResponse:
    """Extract numbers from the pasted text and store the new ones."""

    if not payload.text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="text must not be empty")

    summary = import_text(
        store,
        payload.text,
        region=settings.get_default_region(),
        ninth_digit=settings.ninth_digit_heuristic_enabled(),
    )
    NUMBERS_IMPORTED.inc(summary.inserted)
    return ImportResponse(
        candidates=summary.candidates,
        valid=summary.valid,
        inserted=summary.inserted,
        duplicates=summary.duplicates,
    )


@router.get("", response_model=List[NumberEntry])
def list_numbers(store: NumberStore = Depends(get_store)) -> List[NumberEntry]:
    return [
        NumberEntry(id=rec.id, number=rec.number, called=rec.called, created_at=rec.created_at)
        for rec in store.list_all()
    ]


@router.get("/stats", response_model=StatsResponse)
def number_stats(store: NumberStore = Depends(get_store)) -> StatsResponse:
    return StatsResponse(**store.stats().as_dict())
