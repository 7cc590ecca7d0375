from __future__ import annotations

from datetime import timedelta

import pytest

from eventwatch.error_handling import PersistenceError
from eventwatch.event_store import DEFAULT_ALERT_RULES
from eventwatch.logging_db import DatabaseManager
from eventwatch.models import Event, EventType, Severity, SystemMetrics, format_timestamp, utcnow


def _seed(db, severity, age, event_type=EventType.SYSTEM_ERROR):
    return db.insert_event(Event(
        type=event_type,
        severity=severity,
        title=f"{severity.value} seed",
        message="seeded",
        created_at=format_timestamp(utcnow() - age),
    ))


def test_create_persists_with_metrics_snapshot(store, db):
    event = store.create(EventType.FAILED_UPLOAD, Severity.WARNING, "Upload Failed", "disk full",
                         metadata={"reason": "disk full"})

    assert event.id
    stored = db.get_event(event.id)
    assert stored.type == EventType.FAILED_UPLOAD
    assert stored.metadata == {"reason": "disk full"}
    assert stored.cpu_usage == pytest.approx(12.5)
    assert stored.memory_usage == pytest.approx(40.0)
    assert stored.disk_usage == pytest.approx(30.0)


def test_create_without_metrics(store, monitor):
    event = store.create(EventType.SYSTEM_ERROR, Severity.INFO, "t", "m", include_metrics=False)

    assert monitor.calls == 0
    assert event.cpu_usage is None


def test_create_survives_sampler_failure(store, monitor, db):
    def boom():
        raise RuntimeError("no /proc")

    monitor.sample = boom
    event = store.create(EventType.SYSTEM_ERROR, Severity.INFO, "t", "m")

    assert db.get_event(event.id).cpu_usage is None


def test_info_event_is_not_forwarded(store, transport):
    store.create(EventType.FAILED_UPLOAD, Severity.INFO, "t", "m")
    store.create(EventType.USER_STORAGE_WARNING, Severity.WARNING, "t", "m")

    assert transport.requests == []


def test_critical_event_is_forwarded_once(store, transport):
    store.create(EventType.USER_STORAGE_CRITICAL, Severity.CRITICAL, "Critical", "m")

    assert len(transport.requests) == 1


def test_registration_bypasses_severity_gate(store, transport):
    store.create(EventType.USER_REGISTRATION, Severity.INFO, "New User Registration", "hi")

    assert len(transport.requests) == 1


def test_notification_failure_does_not_undo_create(store, transport, db):
    transport.status_code = 500
    event = store.create(EventType.SYSTEM_ERROR, Severity.ERROR, "t", "m")

    assert len(transport.requests) == 1
    assert db.get_event(event.id) is not None


def test_notification_includes_user_email(store, db, transport):
    db.add_user("u1", "alice@example.com")
    store.create(EventType.USER_STORAGE_CRITICAL, Severity.CRITICAL, "t", "m", user_id="u1")

    fields = transport.payloads[0]["embeds"][0]["fields"]
    assert {"name": "👤 User", "value": "alice@example.com", "inline": True} in fields


@pytest.mark.parametrize("severity", [Severity.INFO, Severity.WARNING])
def test_unforwarded_event_skips_email_lookup(store, db, transport, severity):
    db.add_user("u1", "alice@example.com")
    lookups = []
    real_lookup = db.get_user_email

    def get_user_email(user_id):
        lookups.append(user_id)
        return real_lookup(user_id)

    db.get_user_email = get_user_email
    store.create(EventType.USER_STORAGE_WARNING, severity, "t", "m", user_id="u1")

    assert lookups == []
    assert transport.requests == []


def test_create_reuses_supplied_snapshot(store, monitor, db):
    snapshot = SystemMetrics(cpu_usage=91.0, memory_usage=50.0, disk_usage=20.0)

    event = store.create(EventType.HIGH_CPU_USAGE, Severity.ERROR, "t", "m", metrics=snapshot)

    assert monitor.calls == 0
    assert db.get_event(event.id).cpu_usage == pytest.approx(91.0)


def test_recent_is_newest_first_and_filtered(store, db):
    _seed(db, Severity.INFO, timedelta(hours=3))
    newest = _seed(db, Severity.WARNING, timedelta(hours=1))
    _seed(db, Severity.WARNING, timedelta(hours=2))
    db.add_user("u1", "a@example.com")
    db.insert_event(Event(type=EventType.FAILED_UPLOAD, severity=Severity.WARNING,
                          title="t", message="m", user_id="u1",
                          created_at=format_timestamp(utcnow() - timedelta(hours=5))))

    events = store.recent(limit=10)
    assert [e.created_at for e in events] == sorted((e.created_at for e in events), reverse=True)
    assert events[0].id == newest.id

    assert len(store.recent(limit=1)) == 1
    assert {e.severity for e in store.recent(severity=Severity.WARNING)} == {Severity.WARNING}
    assert [e.user_id for e in store.recent(user_id="u1")] == ["u1"]


def test_stats_since_counts_only_window(store, db):
    _seed(db, Severity.INFO, timedelta(hours=1))
    _seed(db, Severity.INFO, timedelta(hours=2))
    _seed(db, Severity.CRITICAL, timedelta(hours=23))
    _seed(db, Severity.ERROR, timedelta(hours=25))
    _seed(db, Severity.WARNING, timedelta(days=3))

    assert store.stats_since(24) == {"INFO": 2, "CRITICAL": 1}


def test_delete_older_than_removes_every_severity(store, db):
    old = [_seed(db, severity, timedelta(days=31)) for severity in Severity]
    recent = _seed(db, Severity.CRITICAL, timedelta(days=29))

    deleted = store.delete_older_than(30)

    assert deleted == len(old)
    assert all(db.get_event(e.id) is None for e in old)
    assert db.get_event(recent.id) is not None
    cleanups = store.recent(limit=10, severity=Severity.INFO)
    assert len(cleanups) == 1
    assert cleanups[0].type == EventType.BULK_STORAGE_CLEANUP
    assert cleanups[0].metadata["deletedCount"] == 4


def test_delete_older_than_without_matches_is_silent(store, db):
    _seed(db, Severity.INFO, timedelta(days=1))

    assert store.delete_older_than(30) == 0
    assert len(store.recent()) == 1


def test_delete_by_id(store, db):
    event = _seed(db, Severity.ERROR, timedelta(minutes=1))

    assert store.delete_by_id(event.id) is True
    assert store.delete_by_id(event.id) is False


def test_delete_all_reports_itself(store, db):
    for severity in Severity:
        _seed(db, severity, timedelta(minutes=5))

    assert store.delete_all() == 4
    remaining = store.recent()
    assert len(remaining) == 1
    assert remaining[0].type == EventType.BULK_STORAGE_CLEANUP
    assert remaining[0].metadata["severityFilter"] == "all"


def test_delete_all_by_severity(store, db):
    _seed(db, Severity.ERROR, timedelta(minutes=5))
    keep = _seed(db, Severity.CRITICAL, timedelta(minutes=5))

    assert store.delete_all(Severity.ERROR) == 1
    assert db.get_event(keep.id) is not None


def test_delete_non_critical_keeps_errors(store, db):
    _seed(db, Severity.INFO, timedelta(minutes=5))
    _seed(db, Severity.WARNING, timedelta(minutes=5))
    error = _seed(db, Severity.ERROR, timedelta(minutes=5))
    critical = _seed(db, Severity.CRITICAL, timedelta(minutes=5))

    assert store.delete_non_critical() == 2
    ids = {e.id for e in store.recent()}
    assert {error.id, critical.id} <= ids
    assert len(ids) == 3


def test_delete_many(store, db):
    a = _seed(db, Severity.INFO, timedelta(minutes=5))
    b = _seed(db, Severity.INFO, timedelta(minutes=5))

    assert store.delete_many([a.id, b.id, "missing"]) == 2
    assert store.recent()[0].title == "System Events Deleted"


def test_critical_count_and_unread(store, db):
    _seed(db, Severity.CRITICAL, timedelta(hours=1))
    _seed(db, Severity.ERROR, timedelta(hours=2))
    _seed(db, Severity.WARNING, timedelta(hours=1))
    _seed(db, Severity.CRITICAL, timedelta(hours=30))

    assert store.critical_count() == 2
    unread = store.unread_critical()
    assert [e.severity for e in unread] == [Severity.CRITICAL, Severity.ERROR]


def test_initialize_alert_rules_is_idempotent(store, db):
    store.initialize_alert_rules()
    with db.get_connection() as conn:
        conn.execute("UPDATE alert_rules SET threshold = 70 WHERE id = 'HIGH_CPU_USAGE'")
    store.initialize_alert_rules()

    rules = {r.id: r for r in store.alert_rules()}
    assert len(rules) == len(DEFAULT_ALERT_RULES)
    assert rules["HIGH_CPU_USAGE"].threshold == 70
    assert rules["USER_STORAGE_CRITICAL"].threshold == 95
    assert all(r.enabled for r in rules.values())


def test_write_failure_raises_persistence_error(tmp_path):
    broken = DatabaseManager(str(tmp_path / "missing-dir" / "events.db"))

    with pytest.raises(PersistenceError):
        broken.insert_event(Event(type=EventType.SYSTEM_ERROR, severity=Severity.ERROR,
                                  title="t", message="m"))
