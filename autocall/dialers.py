"""Dialer back ends that hand a number to the phone's calling app."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence

from .logging_utils import logger

# `am start` exits 0 even when the activity could not be launched.
_COMMAND_ERROR_MARKERS = ("Error:", "Exception")


@dataclass(frozen=True)
class DialResult:
    ok: bool
    reason: str | None = None


class Dialer(Protocol):
    async def place(self, number: str) -> DialResult: ...


class NullDialer:
    """Log the number and report success without placing a call."""

    def __init__(self) -> None:
        self.placed: List[str] = []

    async def place(self, number: str) -> DialResult:
        self.placed.append(number)
        logger.info("NullDialer: would dial %s", number)
        return DialResult(ok=True)


class CommandDialer:
    """Run an argv template (``{number}`` substituted) to start a call.

    The default template drives an Android handset over adb with
    ``am start -a android.intent.action.CALL``.
    """

    def __init__(self, command: Sequence[str], *, timeout_seconds: float = 15.0) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.timeout_seconds = timeout_seconds

    def build_argv(self, number: str) -> List[str]:
        return [part.replace("{number}", number) for part in self.command]

    async def place(self, number: str) -> DialResult:
        argv = self.build_argv(number)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Dial command %s could not start: %s", argv[0], exc)
            return DialResult(ok=False, reason=f"cannot run {argv[0]}: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error("Dial command timed out after %.1fs", self.timeout_seconds)
            return DialResult(ok=False, reason="dial command timed out")

        output = (stdout or b"").decode("utf-8", "replace") + (stderr or b"").decode("utf-8", "replace")
        if proc.returncode != 0:
            logger.error("Dial command exited with %s: %s", proc.returncode, output.strip())
            return DialResult(ok=False, reason=f"dial command exited with {proc.returncode}")
        if any(marker in output for marker in _COMMAND_ERROR_MARKERS):
            logger.error("Dial command reported an error: %s", output.strip())
            return DialResult(ok=False, reason=output.strip().splitlines()[0])

        logger.debug("Dial command succeeded for %s", number)
        return DialResult(ok=True)


def build_dialer(dialer_cfg: Dict[str, Any]) -> Dialer:
    """Return the dialer selected by the ``dialer`` config section."""

    backend = dialer_cfg.get("backend", "null")
    if backend == "null":
        return NullDialer()
    if backend == "command":
        return CommandDialer(
            dialer_cfg["command"],
            timeout_seconds=float(dialer_cfg.get("command_timeout_seconds") or 15.0),
        )
    raise ValueError(f"Unknown dialer backend {backend!r}")
