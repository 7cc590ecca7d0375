import json
import os
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from .error_handling import PersistenceError
from .models import AlertRule, Event, EventType, Severity, UserUsage, format_timestamp, utcnow

DB_PATH = 'eventwatch.db'
SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'schema.sql')


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row['id'],
        type=EventType(row['type']),
        severity=Severity(row['severity']),
        title=row['title'],
        message=row['message'],
        metadata=json.loads(row['metadata']) if row['metadata'] else {},
        user_id=row['user_id'],
        cpu_usage=row['cpu_usage'],
        memory_usage=row['memory_usage'],
        disk_usage=row['disk_usage'],
        created_at=row['created_at'],
    )


def _row_to_rule(row: sqlite3.Row) -> AlertRule:
    return AlertRule(
        id=row['id'],
        event_type=EventType(row['event_type']),
        threshold=row['threshold'],
        enabled=bool(row['enabled']),
        name=row['name'],
        description=row['description'],
        notify_user=bool(row['notify_user']),
    )


def _placeholders(values) -> str:
    return ', '.join('?' for _ in values)


class DatabaseManager:
    """sqlite-backed storage for events, alert rules and the user/upload tables."""

    def __init__(self, db_path=DB_PATH):
        self.db_path = db_path

    def get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self):
        try:
            conn = self.get_connection()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    def init_db(self):
        with open(SCHEMA_PATH, 'r') as f:
            script = f.read()
        with self._connection() as conn:
            conn.executescript(script)

    # Events

    def insert_event(self, event: Event) -> Event:
        if event.id is None:
            event.id = uuid.uuid4().hex
        if event.created_at is None:
            event.created_at = format_timestamp(utcnow())
        with self._connection() as conn:
            conn.execute(
                '''INSERT INTO events (id, type, severity, title, message, metadata, user_id,
                                       cpu_usage, memory_usage, disk_usage, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                (
                    event.id, event.type.value, event.severity.value, event.title, event.message,
                    json.dumps(event.metadata, default=str) if event.metadata else None,
                    event.user_id, event.cpu_usage, event.memory_usage, event.disk_usage,
                    event.created_at,
                )
            )
        return event

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        return _row_to_event(row) if row else None

    def query_events(self, limit=50, severity: Optional[Severity] = None,
                     user_id: Optional[str] = None, since: Optional[str] = None,
                     severities: Optional[Iterable[Severity]] = None) -> List[Event]:
        clauses, params = [], []
        if severity is not None:
            clauses.append("severity = ?")
            params.append(Severity(severity).value)
        if severities is not None:
            values = [Severity(s).value for s in severities]
            clauses.append(f"severity IN ({_placeholders(values)})")
            params.extend(values)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM events {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
                params
            ).fetchall()
        return [_row_to_event(row) for row in rows]

    def count_by_severity_since(self, since: str) -> Dict[str, int]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT severity, COUNT(id) AS total FROM events WHERE created_at >= ? GROUP BY severity",
                (since,)
            ).fetchall()
        return {row['severity']: row['total'] for row in rows}

    def count_events_since(self, since: str, severities: Iterable[Severity]) -> int:
        values = [Severity(s).value for s in severities]
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(id) FROM events WHERE created_at >= ? AND severity IN ({_placeholders(values)})",
                [since] + values
            ).fetchone()
        return row[0]

    def delete_events_before(self, cutoff: str) -> int:
        with self._connection() as conn:
            cur = conn.execute("DELETE FROM events WHERE created_at < ?", (cutoff,))
            return cur.rowcount

    def delete_event(self, event_id: str) -> bool:
        with self._connection() as conn:
            cur = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
            return cur.rowcount > 0

    def delete_events(self, severities: Optional[Iterable[Severity]] = None) -> int:
        with self._connection() as conn:
            if severities is None:
                cur = conn.execute("DELETE FROM events")
            else:
                values = [Severity(s).value for s in severities]
                cur = conn.execute(
                    f"DELETE FROM events WHERE severity IN ({_placeholders(values)})", values
                )
            return cur.rowcount

    def delete_events_by_ids(self, event_ids: List[str]) -> int:
        if not event_ids:
            return 0
        with self._connection() as conn:
            cur = conn.execute(
                f"DELETE FROM events WHERE id IN ({_placeholders(event_ids)})", list(event_ids)
            )
            return cur.rowcount

    # Alert rules

    def upsert_alert_rule(self, rule: AlertRule):
        """Insert the rule unless a row with its id already exists. Existing rows are left untouched."""
        with self._connection() as conn:
            conn.execute(
                '''INSERT OR IGNORE INTO alert_rules (id, event_type, threshold, enabled, name, description, notify_user)
                   VALUES (?, ?, ?, ?, ?, ?, ?)''',
                (rule.id, rule.event_type.value, rule.threshold, int(rule.enabled),
                 rule.name, rule.description, int(rule.notify_user))
            )

    def get_alert_rules(self) -> List[AlertRule]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM alert_rules ORDER BY id").fetchall()
        return [_row_to_rule(row) for row in rows]

    # Users and uploads

    def add_user(self, user_id: str, email: str, name: str = None,
                 max_storage_limit: int = None, max_uploads: int = 1000, storage_used: int = 0):
        with self._connection() as conn:
            conn.execute(
                '''INSERT INTO users (id, email, name, max_storage_limit, max_uploads, storage_used)
                   VALUES (?, ?, ?, ?, ?, ?)''',
                (user_id, email, name, max_storage_limit, max_uploads, storage_used)
            )

    def add_upload(self, user_id: str, size: int, upload_id: str = None) -> str:
        upload_id = upload_id or uuid.uuid4().hex
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO uploads (id, user_id, size, created_at) VALUES (?, ?, ?, ?)",
                (upload_id, user_id, size, format_timestamp(utcnow()))
            )
        return upload_id

    def list_user_ids(self) -> List[str]:
        with self._connection() as conn:
            rows = conn.execute("SELECT id FROM users ORDER BY rowid").fetchall()
        return [row['id'] for row in rows]

    def get_user_email(self, user_id: str) -> Optional[str]:
        with self._connection() as conn:
            row = conn.execute("SELECT email FROM users WHERE id = ?", (user_id,)).fetchone()
        return row['email'] if row else None

    def get_user_storage_used(self, user_id: str) -> Optional[int]:
        with self._connection() as conn:
            row = conn.execute("SELECT storage_used FROM users WHERE id = ?", (user_id,)).fetchone()
        return row['storage_used'] if row else None

    def get_user_usage(self, user_id: str) -> Optional[UserUsage]:
        with self._connection() as conn:
            row = conn.execute(
                '''SELECT u.id, u.email, u.max_storage_limit, u.max_uploads,
                          COALESCE(SUM(up.size), 0) AS total_size, COUNT(up.id) AS file_count
                   FROM users u LEFT JOIN uploads up ON up.user_id = u.id
                   WHERE u.id = ?
                   GROUP BY u.id''',
                (user_id,)
            ).fetchone()
        if not row:
            return None
        return UserUsage(
            user_id=row['id'],
            email=row['email'],
            storage_used=row['total_size'],
            file_count=row['file_count'],
            max_storage_limit=row['max_storage_limit'],
            max_uploads=row['max_uploads'],
        )

    def update_storage_used(self, user_id: str, storage_used: int):
        with self._connection() as conn:
            conn.execute("UPDATE users SET storage_used = ? WHERE id = ?", (storage_used, user_id))
