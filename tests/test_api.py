from __future__ import annotations

import pytest

import config
from api_app import build_components, create_app
from eventwatch.models import EventType, Severity

ADMIN_HEADERS = {"X-Admin-Email": "admin@example.com"}


@pytest.fixture()
def components(tmp_path, monitor, notifier):
    settings = config.Settings(db_path=str(tmp_path / "api.db"))
    return build_components(settings, monitor=monitor, notifier=notifier)


@pytest.fixture()
def client(components):
    settings = config.Settings(db_path=components.db.db_path)
    app = create_app(settings, start_monitoring=False, components=components)
    app.config["TESTING"] = True
    return app.test_client()


def test_health_reports_metrics(client):
    data = client.get("/api/health").get_json()

    assert data["cpuUsage"] == 12.5
    assert data["memoryUsage"] == 40.0
    assert "timestamp" in data


def test_events_listing_and_filters(client, components):
    store = components.store
    store.create(EventType.FAILED_UPLOAD, Severity.WARNING, "Upload Failed", "m")
    store.create(EventType.SYSTEM_ERROR, Severity.ERROR, "Error", "m")

    all_events = client.get("/api/events").get_json()
    warnings = client.get("/api/events?severity=warning").get_json()

    assert [e["title"] for e in all_events] == ["Error", "Upload Failed"]
    assert [e["type"] for e in warnings] == ["FAILED_UPLOAD"]
    assert client.get("/api/events?limit=1").get_json()[0]["title"] == "Error"


def test_invalid_severity_is_rejected(client):
    response = client.get("/api/events?severity=LOUD")

    assert response.status_code == 400


def test_event_stats(client, components):
    components.store.create(EventType.SYSTEM_ERROR, Severity.ERROR, "t", "m")

    assert client.get("/api/events/stats?hours=1").get_json() == {"ERROR": 1}


def test_monitoring_status(client):
    assert client.get("/api/monitoring/status").get_json() == {"isRunning": False, "intervalExists": False}


def test_admin_routes_require_identity(client):
    response = client.post("/api/admin/checks")

    assert response.status_code == 400


def test_trigger_checks_route(client, transport):
    response = client.post("/api/admin/checks", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.get_json()["success"] is True
    assert len(transport.requests) == 1


def test_delete_event_route(client, components):
    event = components.store.create(EventType.SYSTEM_ERROR, Severity.INFO, "t", "m")

    ok = client.delete(f"/api/admin/events/{event.id}", headers=ADMIN_HEADERS)
    missing = client.delete(f"/api/admin/events/{event.id}", headers=ADMIN_HEADERS)

    assert ok.status_code == 200
    assert missing.status_code == 404


def test_clear_routes(client, components):
    store = components.store
    store.create(EventType.SYSTEM_ERROR, Severity.INFO, "t", "m")
    store.create(EventType.SYSTEM_ERROR, Severity.CRITICAL, "t", "m")

    non_critical = client.post("/api/admin/events/clear-non-critical", headers=ADMIN_HEADERS)
    assert non_critical.get_json()["deletedCount"] == 1

    by_severity = client.post("/api/admin/events/clear", json={"severity": "CRITICAL"},
                              headers=ADMIN_HEADERS)
    assert by_severity.get_json()["deletedCount"] == 1


def test_cleanup_route(client):
    response = client.post("/api/admin/cleanup", headers=ADMIN_HEADERS)

    assert response.get_json() == {"success": True, "message": "Cleaned up 0 old events", "deletedCount": 0}
