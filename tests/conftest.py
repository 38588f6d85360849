"""Global pytest configuration for Autocall tests."""

import asyncio
import os
import sys
from pathlib import Path
from typing import Iterator, List

import pytest


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent


def _ensure_project_on_path() -> None:
    """Allow tests to import the local `autocall` package without editable installs."""

    root_str = str(_project_root())
    if root_str not in sys.path:
        sys.path.insert(0, root_str)


def _ensure_sqlite_path() -> None:
    """Point SQLite persistence at a test-local path and ensure parent exists."""

    db_path = _project_root() / "data" / "test_autocall.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    os.environ.setdefault("SQLITE_PATH", str(db_path))


def _ensure_test_config_path() -> None:
    """Pin tests to a dedicated config file with the null dialer."""

    test_config = _project_root() / "tests" / "fixtures" / "config.test.yaml"
    if not test_config.exists():
        raise FileNotFoundError("tests/fixtures/config.test.yaml is required for pytest runs")

    os.environ.setdefault("AUTOCALL_CONFIG_PATH", str(test_config))


_ensure_project_on_path()
_ensure_sqlite_path()
_ensure_test_config_path()
os.environ.setdefault("AUTOCALL_LOG_DIR", str(_project_root() / "logs"))

from autocall.dialers import DialResult  # noqa: E402
from autocall.store import NumberStore  # noqa: E402


class FakeDialer:
    """Records dialled numbers and replays scripted results."""

    def __init__(self, results: List[DialResult] | None = None, *, delay: float = 0.0) -> None:
        self.results = list(results or [])
        self.delay = delay
        self.placed: List[str] = []

    async def place(self, number: str) -> DialResult:
        self.placed.append(number)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.results:
            return self.results.pop(0)
        return DialResult(ok=True)


@pytest.fixture
def fake_dialer() -> FakeDialer:
    return FakeDialer()


@pytest.fixture
def store(tmp_path: Path) -> Iterator[NumberStore]:
    number_store = NumberStore.open(f"sqlite:///{tmp_path / 'numbers.db'}")
    try:
        yield number_store
    finally:
        number_store.close()


NUMBERS = ["+5561988377338", "+5511912345678", "+5521987654321"]


@pytest.fixture
def filled_store(store: NumberStore) -> NumberStore:
    store.insert_many(NUMBERS)
    return store
