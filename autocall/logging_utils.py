"""Centralised logging configuration for Autocall components."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from typing import Any

__all__ = ["logger", "mask_number", "mask_numbers_in", "setup_logging"]

_DEFAULT_LOG_RECORD_FIELDS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "message",
    "module",
    "msecs",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}
_E164_PATTERN = re.compile(r"\+\d{8,15}")
_VISIBLE_PREFIX = 5
_VISIBLE_SUFFIX = 2
_LOGGER_NAME = "autocall"


def mask_number(number: str) -> str:
    """Return *number* with its middle digits hidden (``+5561*******38``)."""

    if len(number) <= _VISIBLE_PREFIX + _VISIBLE_SUFFIX:
        return number
    hidden = len(number) - _VISIBLE_PREFIX - _VISIBLE_SUFFIX
    return number[:_VISIBLE_PREFIX] + "*" * hidden + number[-_VISIBLE_SUFFIX:]


def _mask_string(value: str) -> str:
    return _E164_PATTERN.sub(lambda match: mask_number(match.group(0)), value)


def mask_numbers_in(value: Any) -> Any:
    """Recursively mask E.164 numbers inside strings, mappings and sequences."""

    if isinstance(value, str):
        return _mask_string(value)
    if isinstance(value, Mapping):
        return {k: mask_numbers_in(v) for k, v in value.items()}
    if isinstance(value, list):
        return [mask_numbers_in(item) for item in value]
    if isinstance(value, tuple):
        return tuple(mask_numbers_in(item) for item in value)
    return value


class _NumberMaskFilter(logging.Filter):
    """Logging filter that keeps full phone numbers out of log files."""

    def filter(self, record: logging.LogRecord) -> bool:
        if os.environ.get("AUTOCALL_LOG_FULL_NUMBERS"):
            return True

        masked_message = _mask_string(record.getMessage())
        record.msg = masked_message
        record.args = ()
        record.__dict__["message"] = masked_message

        for key, value in list(record.__dict__.items()):
            if key in _DEFAULT_LOG_RECORD_FIELDS:
                continue
            record.__dict__[key] = mask_numbers_in(value)
        return True


_NUMBER_FILTER = _NumberMaskFilter()


def _attach_number_filter(target: logging.Logger) -> None:
    """Ensure the masking filter is installed on the logger and its handlers."""

    if not any(isinstance(existing, _NumberMaskFilter) for existing in target.filters):
        target.addFilter(_NUMBER_FILTER)
    for handler in target.handlers:
        if not any(isinstance(existing, _NumberMaskFilter) for existing in handler.filters):
            handler.addFilter(_NUMBER_FILTER)


def setup_logging(logger: logging.Logger | None = None) -> logging.Logger:
    """Initialise consistent logging handlers across the application."""

    for noisy in ("httpx", "httpcore", "urllib3", "multipart", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logger or logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    if not logger.handlers:
        log_dir = os.environ.get("AUTOCALL_LOG_DIR", "logs")
        try:
            os.makedirs(log_dir, exist_ok=True)

            log_path = os.path.join(log_dir, "app.log")
            file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s - %(message)s",
                    "%Y-%m-%d %I:%M:%S %p",
                )
            )
            logger.addHandler(file_handler)
        except OSError as exc:  # pragma: no cover - filesystem edge cases
            print(f"Error creating file handler: {exc}")

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(console_handler)

    _attach_number_filter(logger)

    return logger


logger = setup_logging()
