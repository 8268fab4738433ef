from __future__ import annotations

import threading
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock
from time_balance.bootstrap import create_services
from time_balance.storage import InMemoryKeyValueStore
from time_balance.webapp import create_app


@pytest.fixture
def api_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def services(tmp_path, api_clock):
    return create_services(
        store=InMemoryKeyValueStore(), sync_dir=tmp_path / "sync", clock=api_clock
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


def _meter_id(client, name: str) -> str:
    meters = client.get("/api/meters").json()["meters"]
    return next(meter["id"] for meter in meters if meter["name"] == name)


def test_default_meters_are_listed(client):
    response = client.get("/api/meters")

    assert response.status_code == 200
    assert [meter["name"] for meter in response.json()["meters"]] == [
        "+1x",
        "+1.5x",
        "+2x",
        "-1x",
        "-2x",
    ]


def test_tracking_updates_balance(client, api_clock):
    response = client.post(f"/api/meters/{_meter_id(client, '+2x')}/activate")
    assert response.status_code == 200
    assert response.json()["event"]["isActive"] is True

    api_clock.advance(minutes=90)
    assert client.get("/api/balance").json()["hours"] == pytest.approx(3.0)

    stopped = client.post("/api/deactivate").json()["event"]
    assert stopped["meterName"] == "+2x"
    assert stopped["contributionSeconds"] == pytest.approx(3 * 3600)
    assert client.post("/api/deactivate").json()["event"] is None

    status = client.get("/api/status").json()
    assert status["active_event"] is None
    assert status["variant"] == "meter"


def test_meter_management_errors(client):
    assert client.post("/api/meters", json={"name": "Turbo", "factor": 12}).status_code == 400
    assert client.post("/api/meters", json={"name": " "}).status_code == 400
    assert client.post("/api/meters", json={"name": "X", "colour": "red"}).status_code == 422
    assert client.post(f"/api/meters/{uuid4()}/activate").status_code == 404

    for index in range(3):
        assert client.post("/api/meters", json={"name": f"Extra {index}"}).status_code == 201
    response = client.post("/api/meters", json={"name": "Ninth"})
    assert response.status_code == 409
    assert "8" in response.json()["detail"]


def test_rename_reorder_and_delete(client):
    meter_id = _meter_id(client, "-2x")
    client.post(f"/api/meters/{meter_id}/activate")

    renamed = client.patch(f"/api/meters/{meter_id}", json={"name": "Doomscrolling"})
    assert renamed.json()["meter"]["name"] == "Doomscrolling"
    assert client.get("/api/status").json()["active_event"]["meterName"] == "Doomscrolling"

    assert client.delete(f"/api/meters/{meter_id}").status_code == 409
    client.post("/api/deactivate")
    assert client.delete(f"/api/meters/{meter_id}").status_code == 204

    ids = [meter["id"] for meter in client.get("/api/meters").json()["meters"]]
    reordered = client.post("/api/meters/reorder", json={"ids": list(reversed(ids))}).json()
    assert reordered["applied"] is True
    assert [meter["id"] for meter in reordered["meters"]] == list(reversed(ids))
    assert client.post("/api/meters/reorder", json={"ids": ids[:1]}).json()["applied"] is False


def test_event_editing(client, api_clock):
    client.post(f"/api/meters/{_meter_id(client, '+1x')}/activate")
    api_clock.advance(hours=2)
    event_id = client.get("/api/events").json()["events"][0]["id"]

    start = (api_clock() - timedelta(hours=1)).isoformat()
    end = api_clock().isoformat()
    body = {"start_time": start, "end_time": end}
    assert client.patch(f"/api/events/{event_id}", json=body).status_code == 409

    client.post("/api/deactivate")
    future = {"start_time": start, "end_time": (api_clock() + timedelta(hours=1)).isoformat()}
    assert client.patch(f"/api/events/{event_id}", json=future).status_code == 400

    updated = client.patch(f"/api/events/{event_id}", json=body)
    assert updated.status_code == 200
    assert updated.json()["event"]["durationSeconds"] == pytest.approx(3600)

    assert client.delete(f"/api/events/{event_id}").status_code == 204
    assert client.delete(f"/api/events/{event_id}").status_code == 404
    assert client.get("/api/events").json()["events"] == []


def test_timeline_and_period(client, api_clock):
    client.post(f"/api/meters/{_meter_id(client, '-1x')}/activate")
    api_clock.advance(hours=1)

    timeline = client.get("/api/timeline", params={"hours": 2}).json()
    assert timeline["period_hours"] == 2
    assert timeline["points"][-1]["balance_hours"] == pytest.approx(-1.0)

    assert client.put("/api/timeline-period", json={"hours": 0}).status_code == 422
    assert client.put("/api/timeline-period", json={"hours": 6}).status_code == 200
    assert client.get("/api/status").json()["timeline_period_hours"] == pytest.approx(6)
    assert client.get("/api/timeline").json()["period_hours"] == pytest.approx(6)


def test_export_import_and_reset(client):
    client.post("/api/meters", json={"name": "Reading", "factor": 0.5})
    exported = client.get("/api/export")
    assert exported.status_code == 200

    client.post("/api/reset")
    assert "Reading" not in [m["name"] for m in client.get("/api/meters").json()["meters"]]

    response = client.post(
        "/api/import", content=exported.content, headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 200
    assert response.json()["meters"] == 6
    assert "Reading" in [m["name"] for m in client.get("/api/meters").json()["meters"]]

    assert client.post("/api/import", content=b"garbage").status_code == 400
    assert client.post("/api/import", content=b'{"meters": []}').status_code == 400


def test_device_and_notifications(client):
    response = client.post("/api/device", json={"event_type": "orientation", "face": 1})

    assert response.json()["action"] == "activated #1"
    assert response.json()["log"][0]["message"] == "Face 1 -> activated #1"

    titles = [item["title"] for item in client.get("/api/notifications").json()["notifications"]]
    assert titles[0] == "Meter started"


def test_concurrent_activations_keep_one_running_meter(client, services):
    meter_ids = [meter["id"] for meter in client.get("/api/meters").json()["meters"]]
    workers = 8
    barrier = threading.Barrier(workers)
    codes = []

    def _activate(index):
        barrier.wait()
        response = client.post(f"/api/meters/{meter_ids[index % len(meter_ids)]}/activate")
        codes.append(response.status_code)

    threads = [threading.Thread(target=_activate, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert codes == [200] * workers
    events = client.get("/api/events").json()["events"]
    assert len(events) == workers
    assert sum(1 for event in events if event["isActive"]) == 1
    assert services.controller.active_event() is not None
