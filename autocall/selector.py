"""Selection and rotation policy over the number store."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .errors import RotationInvariantError
from .logging_utils import logger
from .store import NumberRecord, NumberStore


class SelectionKind(str, enum.Enum):
    FOUND = "found"
    EMPTY_STORE = "empty_store"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class Selection:
    kind: SelectionKind
    record: NumberRecord | None = None


class QueueSelector:
    """Decide what to dial next and when a rotation decision is due.

    Exhaustion is never resolved here: the caller must obtain an explicit
    user decision before invoking :meth:`rotate`.
    """

    def __init__(self, store: NumberStore) -> None:
        self.store = store

    def select_next(self) -> Selection:
        record = self.store.next_uncalled()
        if record is not None:
            return Selection(SelectionKind.FOUND, record)

        if self.store.stats().total == 0:
            return Selection(SelectionKind.EMPTY_STORE)
        return Selection(SelectionKind.EXHAUSTED)

    def rotate(self) -> Selection:
        """Reset every called flag and return the first selection of the new cycle."""

        self.store.reset_all()
        selection = self.select_next()
        if selection.kind is not SelectionKind.FOUND:
            raise RotationInvariantError(f"Rotation reset left nothing to dial ({selection.kind.value})")
        logger.info("Rotation restarted; next selection is %s", selection.kind.value)
        return selection
