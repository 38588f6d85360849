"""HTTP tests for the queue and dispatch endpoints."""

import time
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from autocall import settings
from autocall.dialers import DialResult
from autocall.main import create_app

PASTED = "Ana (61) 8837-7338, Bruno 11 91234-5678, Carla +55 21 98765-4321"


@pytest.fixture
def isolated_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    db_path = tmp_path / "api.db"
    monkeypatch.setenv("SQLITE_PATH", str(db_path))
    settings.refresh_config_cache()
    try:
        yield db_path
    finally:
        settings.refresh_config_cache()


@pytest.fixture
def client(isolated_db, fake_dialer) -> Iterator[TestClient]:
    with TestClient(create_app(dialer=fake_dialer)) as test_client:
        yield test_client


def _import(client: TestClient, text: str = PASTED) -> dict:
    response = client.post("/v1/numbers/import", json={"text": text})
    assert response.status_code == 200
    return response.json()


def test_healthz_and_metrics(client):
    assert client.get("/healthz").text == "ok"

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "dispatch_outcomes_total" in response.text


def test_import_and_list_numbers(client):
    body = _import(client)

    assert body == {"candidates": 3, "valid": 3, "inserted": 3, "duplicates": 0}
    assert _import(client)["duplicates"] == 3

    rows = client.get("/v1/numbers").json()
    assert [row["number"] for row in rows] == ["+5561988377338", "+5511912345678", "+5521987654321"]
    assert all(row["called"] is False for row in rows)
    assert all("createdAt" in row for row in rows)

    assert client.get("/v1/numbers/stats").json() == {"total": 3, "called": 0, "remaining": 3}


def test_import_rejects_blank_text(client):
    response = client.post("/v1/numbers/import", json={"text": "   "})
    assert response.status_code == 400


def test_next_call_then_ended_marks_number(client, fake_dialer):
    _import(client)

    body = client.post("/v1/calls/next").json()
    assert body["status"] == "dialing"
    assert body["number"] == "+5561988377338"
    assert body["recordId"] is not None
    assert fake_dialer.placed == ["+5561988377338"]

    session = client.get("/v1/calls/session").json()
    assert session["state"] == "in_flight"
    assert session["activeRecordId"] == body["recordId"]

    assert client.post("/v1/calls/next").json()["status"] == "already_in_flight"

    assert client.post("/v1/calls/ended").json() == {"result": "marked"}
    assert client.post("/v1/calls/ended").json() == {"result": "ignored"}
    assert client.get("/v1/numbers/stats").json()["called"] == 1

    session = client.get("/v1/calls/session").json()
    assert session["state"] == "idle"
    assert session["lastDialedNumber"] == "+5561988377338"
    assert session["lastResult"] == "marked"


def test_empty_store(client, fake_dialer):
    assert client.post("/v1/calls/next", json={}).json()["status"] == "empty_store"
    assert fake_dialer.placed == []


def test_rotation_flow(client):
    _import(client, "Ana (61) 8837-7338")
    client.post("/v1/calls/next")
    client.post("/v1/calls/ended")

    assert client.post("/v1/calls/next").json()["status"] == "rotation_required"
    assert client.post("/v1/calls/next", json={"confirmRotation": False}).json()["status"] == "rotation_declined"

    body = client.post("/v1/calls/next", json={"confirmRotation": True}).json()
    assert body["status"] == "dialing"
    assert body["rotated"] is True
    assert client.get("/v1/numbers/stats").json() == {"total": 1, "called": 0, "remaining": 1}


def test_dial_failure_is_reported(client, fake_dialer):
    _import(client)
    fake_dialer.results = [DialResult(ok=False, reason="Direct call failed")]

    body = client.post("/v1/calls/next").json()

    assert body["status"] == "dial_failed"
    assert body["reason"] == "Direct call failed"
    assert client.get("/v1/calls/session").json()["state"] == "idle"
    assert client.get("/v1/numbers/stats").json()["called"] == 0


def test_specific_dial_and_redial(client, fake_dialer):
    _import(client)

    assert client.post("/v1/calls/redial").json()["status"] == "nothing_to_redial"

    body = client.post("/v1/calls/dial", json={"number": "(61) 98837-7338"}).json()
    assert body["status"] == "dialing"
    assert body["number"] == "+5561988377338"
    assert body["recordId"] is None
    assert client.post("/v1/calls/ended").json() == {"result": "untracked"}

    assert client.post("/v1/calls/redial").json()["number"] == "+5561988377338"
    assert client.post("/v1/calls/ended").json() == {"result": "untracked"}
    assert client.get("/v1/numbers/stats").json()["called"] == 0
    assert fake_dialer.placed == ["+5561988377338", "+5561988377338"]


def test_specific_dial_rejects_invalid_number(client):
    response = client.post("/v1/calls/dial", json={"number": "12345"})
    assert response.status_code == 400


def test_capability_gate_blocks_dialing(isolated_db, fake_dialer):
    app = create_app(dialer=fake_dialer, capability_gate=lambda: False)
    with TestClient(app) as client:
        _import(client)

        for path in ("/v1/calls/next", "/v1/calls/redial"):
            assert client.post(path).status_code == 403
        assert client.post("/v1/calls/dial", json={"number": "+5561988377338"}).status_code == 403

        assert client.post("/v1/calls/ended").json() == {"result": "ignored"}
    assert fake_dialer.placed == []


def test_storage_error_maps_to_503(client, monkeypatch):
    from autocall.errors import StorageError

    def _broken():
        raise StorageError("database is locked")

    monkeypatch.setattr(client.app.state.store, "stats", _broken)

    response = client.get("/v1/numbers/stats")
    assert response.status_code == 503
    assert response.json()["detail"] == "Number store unavailable"


def test_startup_fails_when_store_cannot_open(tmp_path, monkeypatch, fake_dialer):
    from autocall.errors import StorageError

    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    monkeypatch.setenv("SQLITE_PATH", str(blocker / "numbers.db"))
    settings.refresh_config_cache()
    try:
        with pytest.raises(StorageError):
            with TestClient(create_app(dialer=fake_dialer)):
                pass
    finally:
        monkeypatch.undo()
        settings.refresh_config_cache()


def test_abandoned_call_is_visible_in_session(client):
    _import(client)
    client.app.state.session.call_timeout_seconds = 0.05

    body = client.post("/v1/calls/next").json()
    assert body["status"] == "dialing"
    assert client.get("/v1/calls/session").json()["lastResult"] is None

    deadline = time.monotonic() + 2.0
    session = client.get("/v1/calls/session").json()
    while session["state"] != "idle" and time.monotonic() < deadline:
        time.sleep(0.05)
        session = client.get("/v1/calls/session").json()

    assert session["state"] == "idle"
    assert session["lastResult"] == "dial_timed_out"
    assert client.post("/v1/calls/ended").json() == {"result": "ignored"}
    assert client.get("/v1/numbers/stats").json()["called"] == 0
    assert 'calls_ended_total{result="dial_timed_out"}' in client.get("/metrics").text
