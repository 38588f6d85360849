"""In-flight call state machine.

A :class:`DispatchSession` is either ``idle`` or ``in_flight``. Requests move
it to ``in_flight`` and hand a number to the dialer. The call-ended signal
resolves the session and marks the queued record as called. Every transition
runs under one lock, so a dial request can never interleave with an end
signal. Store calls run in a worker thread while the lock is held.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .dialers import Dialer, DialResult
from .errors import RotationInvariantError
from .logging_utils import logger
from .metrics import CALLS_ENDED
from .selector import QueueSelector, SelectionKind


class SessionState(str, enum.Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


class DispatchStatus(str, enum.Enum):
    DIALING = "dialing"
    EMPTY_STORE = "empty_store"
    ROTATION_REQUIRED = "rotation_required"
    ROTATION_DECLINED = "rotation_declined"
    DIAL_FAILED = "dial_failed"
    ALREADY_IN_FLIGHT = "already_in_flight"
    NOTHING_TO_REDIAL = "nothing_to_redial"


class CallEndResult(str, enum.Enum):
    MARKED = "marked"
    UNTRACKED = "untracked"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    DIAL_TIMED_OUT = "dial_timed_out"


@dataclass(frozen=True)
class DispatchOutcome:
    status: DispatchStatus
    number: Optional[str] = None
    record_id: Optional[int] = None
    reason: Optional[str] = None
    rotated: bool = False


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    active_record_id: Optional[int]
    last_dialed_number: Optional[str]
    dialed_at: Optional[datetime]
    last_result: Optional[CallEndResult]


class DispatchSession:
    """Owns the single active call of the device."""

    def __init__(
        self,
        selector: QueueSelector,
        dialer: Dialer,
        *,
        call_timeout_seconds: float | None = None,
    ) -> None:
        self.selector = selector
        self.dialer = dialer
        self.call_timeout_seconds = call_timeout_seconds

        self._lock = asyncio.Lock()
        self._state = SessionState.IDLE
        self._active_record_id: int | None = None
        self._last_dialed_number: str | None = None
        self._dialed_at: datetime | None = None
        self._last_result: CallEndResult | None = None
        self._generation = 0
        self._timeout_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            active_record_id=self._active_record_id,
            last_dialed_number=self._last_dialed_number,
            dialed_at=self._dialed_at,
            last_result=self._last_result,
        )

    # ------------------------------------------------------------------
    # Idle -> InFlight
    # ------------------------------------------------------------------
    async def request_next_call(self, confirm_rotation: bool | None = None) -> DispatchOutcome:
        """Dial the next uncalled number.

        When the queue is exhausted, ``confirm_rotation`` carries the user's
        decision: ``None`` asks for one, ``False`` declines, ``True`` resets
        every record and dials the first one of the new cycle.
        """

        async with self._lock:
            if self._state is SessionState.IN_FLIGHT:
                return self._reject()

            selection = await asyncio.to_thread(self.selector.select_next)
            rotated = False

            if selection.kind is SelectionKind.EMPTY_STORE:
                logger.info("Call requested but the number store is empty")
                return DispatchOutcome(DispatchStatus.EMPTY_STORE)

            if selection.kind is SelectionKind.EXHAUSTED:
                if confirm_rotation is None:
                    logger.info("All numbers called; waiting for a rotation decision")
                    return DispatchOutcome(DispatchStatus.ROTATION_REQUIRED)
                if not confirm_rotation:
                    logger.info("Rotation declined; staying idle")
                    return DispatchOutcome(DispatchStatus.ROTATION_DECLINED)
                selection = await asyncio.to_thread(self.selector.rotate)
                rotated = True

            record = selection.record
            if record is None:
                raise RotationInvariantError(f"Selection {selection.kind.value} carried no record")
            return await self._dial_locked(record.number, record_id=record.id, rotated=rotated)

    async def request_specific_call(self, number: str) -> DispatchOutcome:
        """Dial *number* without consulting the queue.

        Ad-hoc dials never mark a record on completion, even when the number
        is stored and uncalled.
        """

        async with self._lock:
            if self._state is SessionState.IN_FLIGHT:
                return self._reject()
            return await self._dial_locked(number, record_id=None)

    async def redial(self) -> DispatchOutcome:
        """Dial the last dispatched number again."""

        async with self._lock:
            if self._state is SessionState.IN_FLIGHT:
                return self._reject()
            if self._last_dialed_number is None:
                return DispatchOutcome(DispatchStatus.NOTHING_TO_REDIAL)
            return await self._dial_locked(self._last_dialed_number, record_id=None)

    # ------------------------------------------------------------------
    # InFlight -> Idle
    # ------------------------------------------------------------------
    async def external_call_ended(self) -> CallEndResult:
        """Resolve the in-flight call; duplicate signals are no-ops."""

        async with self._lock:
            if self._state is SessionState.IDLE:
                logger.debug("Call-ended signal while idle; ignoring")
                return CallEndResult.IGNORED

            record_id = self._active_record_id
            if record_id is None:
                result = CallEndResult.UNTRACKED
            elif await asyncio.to_thread(self.selector.store.mark_called, record_id):
                result = CallEndResult.MARKED
            else:
                result = CallEndResult.NOT_FOUND

            logger.info("Call to %s ended (%s)", self._last_dialed_number, result.value)
            self._last_result = result
            self._to_idle()
            return result

    async def call_timed_out(self, generation: int | None = None) -> bool:
        """Abandon the in-flight call without marking its record.

        ``generation`` lets the watchdog ignore a call that already ended.
        Returns whether the session was actually moved back to idle.
        """

        async with self._lock:
            if self._state is SessionState.IDLE:
                return False
            if generation is not None and generation != self._generation:
                return False
            logger.warning(
                "dial_timed_out: no call-ended signal for %s; record %s left uncalled",
                self._last_dialed_number,
                self._active_record_id,
            )
            self._last_result = CallEndResult.DIAL_TIMED_OUT
            CALLS_ENDED.labels(result=CallEndResult.DIAL_TIMED_OUT.value).inc()
            self._to_idle()
            return True

    async def close(self) -> None:
        """Cancel the timeout watchdog, if any."""

        task = self._timeout_task
        self._timeout_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Internal helpers (lock held)
    # ------------------------------------------------------------------
    def _reject(self) -> DispatchOutcome:
        logger.warning("Dial request rejected: a call to %s is already in flight", self._last_dialed_number)
        return DispatchOutcome(
            DispatchStatus.ALREADY_IN_FLIGHT,
            number=self._last_dialed_number,
            record_id=self._active_record_id,
        )

    async def _dial_locked(self, number: str, *, record_id: int | None, rotated: bool = False) -> DispatchOutcome:
        self._state = SessionState.IN_FLIGHT
        self._active_record_id = record_id
        self._last_dialed_number = number
        self._dialed_at = datetime.now(timezone.utc)
        self._last_result = None
        self._generation += 1

        try:
            result = await self.dialer.place(number)
        except Exception as exc:  # noqa: BLE001 - any dialer crash is a failed dial
            logger.exception("Dialer raised while placing call to %s", number)
            result = DialResult(ok=False, reason=str(exc) or exc.__class__.__name__)

        if not result.ok:
            reason = result.reason or "dialer reported failure"
            logger.error("DialFailed for %s: %s", number, reason)
            self._to_idle()
            return DispatchOutcome(
                DispatchStatus.DIAL_FAILED,
                number=number,
                record_id=record_id,
                reason=reason,
                rotated=rotated,
            )

        logger.info("Dialing %s (record=%s)", number, record_id)
        self._arm_timeout()
        return DispatchOutcome(DispatchStatus.DIALING, number=number, record_id=record_id, rotated=rotated)

    def _to_idle(self) -> None:
        self._state = SessionState.IDLE
        self._active_record_id = None
        task = self._timeout_task
        self._timeout_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _arm_timeout(self) -> None:
        if not self.call_timeout_seconds:
            return
        self._timeout_task = asyncio.create_task(
            self._expire_after(self._generation, self.call_timeout_seconds)
        )

    async def _expire_after(self, generation: int, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.call_timed_out(generation)
