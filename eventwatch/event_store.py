import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from .logging_db import DatabaseManager
from .models import (
    NON_CRITICAL_SEVERITIES, AlertRule, Event, EventType, Severity, SystemMetrics,
    format_timestamp, utcnow,
)
from .monitor_base import MonitorBase
from .notifications import DiscordNotifier

logger = logging.getLogger(__name__)

DEFAULT_ALERT_RULES = [
    AlertRule(id='USER_STORAGE_WARNING', event_type=EventType.USER_STORAGE_WARNING, threshold=80,
              name='User Storage Warning', description='Alert when user reaches 80% of storage limit',
              notify_user=True),
    AlertRule(id='USER_STORAGE_CRITICAL', event_type=EventType.USER_STORAGE_CRITICAL, threshold=95,
              name='User Storage Critical', description='Alert when user reaches 95% of storage limit',
              notify_user=True),
    AlertRule(id='SYSTEM_STORAGE_WARNING', event_type=EventType.SYSTEM_STORAGE_WARNING, threshold=80,
              name='System Storage Warning', description='Alert when system disk usage reaches 80%'),
    AlertRule(id='SYSTEM_STORAGE_CRITICAL', event_type=EventType.SYSTEM_STORAGE_CRITICAL, threshold=95,
              name='System Storage Critical', description='Alert when system disk usage reaches 95%'),
    AlertRule(id='HIGH_CPU_USAGE', event_type=EventType.HIGH_CPU_USAGE, threshold=90,
              name='High CPU Usage', description='Alert when CPU usage exceeds 90%'),
    AlertRule(id='HIGH_MEMORY_USAGE', event_type=EventType.HIGH_MEMORY_USAGE, threshold=90,
              name='High Memory Usage', description='Alert when memory usage exceeds 90%'),
]


class EventStore:
    """
    Persistence and querying of system events.

    ``create`` always persists first and then dispatches the notification
    inside its own error boundary, so a webhook failure never undoes or
    fails the write.
    """

    def __init__(self, db: DatabaseManager, monitor: Optional[MonitorBase] = None,
                 notifier: Optional[DiscordNotifier] = None):
        self.db = db
        self.monitor = monitor
        self.notifier = notifier

    def create(self, event_type: EventType, severity: Severity, title: str, message: str,
               user_id: Optional[str] = None, metadata: Optional[dict] = None,
               include_metrics: bool = True, metrics: Optional[SystemMetrics] = None) -> Event:
        """Persist one event. ``metrics`` reuses a snapshot already taken by the caller."""
        event = Event(
            type=EventType(event_type),
            severity=Severity(severity),
            title=title,
            message=message,
            metadata=dict(metadata or {}),
            user_id=user_id,
        )

        if include_metrics and metrics is None and self.monitor is not None:
            try:
                metrics = self.monitor.sample()
            except Exception as e:
                logger.error(f"Failed to get system metrics: {e}")
        if include_metrics and metrics is not None:
            event.cpu_usage = metrics.cpu_usage
            event.memory_usage = metrics.memory_usage
            event.disk_usage = metrics.disk_usage

        self.db.insert_event(event)
        logger.info(f"[{event.severity.value}] {event.type.value}: {event.title}")

        self._dispatch_notification(event)
        return event

    def _dispatch_notification(self, event: Event) -> bool:
        if self.notifier is None:
            return False
        registration = event.type == EventType.USER_REGISTRATION
        if not registration and event.severity.rank < Severity.ERROR.rank:
            return False
        try:
            user_email = self.db.get_user_email(event.user_id) if event.user_id else None
            options = {
                'metadata': event.metadata,
                'user_email': user_email,
                'cpu_usage': event.cpu_usage,
                'memory_usage': event.memory_usage,
                'disk_usage': event.disk_usage,
            }
            if registration:
                return self.notifier.send_event_notification(
                    event.type, event.severity, event.title, event.message, **options
                )
            return self.notifier.send_critical_event_notification(
                event.type, event.severity, event.title, event.message, **options
            )
        except Exception as e:
            logger.error(f"Failed to send Discord notification for event {event.id}: {e}")
            return False

    def recent(self, limit: int = 50, severity: Optional[Severity] = None,
               user_id: Optional[str] = None) -> List[Event]:
        return self.db.query_events(limit=limit, severity=severity, user_id=user_id)

    def stats_since(self, hours: float = 24) -> Dict[str, int]:
        since = format_timestamp(utcnow() - timedelta(hours=hours))
        return self.db.count_by_severity_since(since)

    def critical_count(self, hours: float = 24) -> int:
        """Number of ERROR and CRITICAL events in the last ``hours``."""
        since = format_timestamp(utcnow() - timedelta(hours=hours))
        return self.db.count_events_since(since, [Severity.CRITICAL, Severity.ERROR])

    def unread_critical(self, limit: int = 5) -> List[Event]:
        since = format_timestamp(utcnow() - timedelta(hours=24))
        return self.db.query_events(
            limit=limit, since=since, severities=[Severity.CRITICAL, Severity.ERROR]
        )

    def delete_older_than(self, days: int = 30) -> int:
        """Retention sweep. Removes every event before the cutoff, whatever its severity."""
        cutoff = format_timestamp(utcnow() - timedelta(days=days))
        deleted = self.db.delete_events_before(cutoff)

        if deleted > 0:
            self.create(
                EventType.BULK_STORAGE_CLEANUP,
                Severity.INFO,
                'System Events Cleanup',
                f"Cleaned up {deleted} old system events",
                metadata={'deletedCount': deleted, 'olderThan': cutoff},
            )
        return deleted

    def delete_by_id(self, event_id: str) -> bool:
        return self.db.delete_event(event_id)

    def delete_all(self, severity_filter: Optional[Iterable[Severity]] = None) -> int:
        severities = None
        if severity_filter is not None:
            if isinstance(severity_filter, (str, Severity)):
                severity_filter = [severity_filter]
            severities = [Severity(s) for s in severity_filter]

        deleted = self.db.delete_events(severities)

        if deleted > 0:
            scope = f" ({', '.join(s.value for s in severities)})" if severities else ''
            self.create(
                EventType.BULK_STORAGE_CLEANUP,
                Severity.INFO,
                'System Events Cleared',
                f"Cleared {deleted} system events{scope}",
                metadata={
                    'deletedCount': deleted,
                    'severityFilter': [s.value for s in severities] if severities else 'all',
                    'clearedAt': format_timestamp(utcnow()),
                },
            )
        return deleted

    def delete_non_critical(self) -> int:
        return self.delete_all(NON_CRITICAL_SEVERITIES)

    def delete_many(self, event_ids: List[str]) -> int:
        deleted = self.db.delete_events_by_ids(list(event_ids))

        if deleted > 0:
            self.create(
                EventType.BULK_STORAGE_CLEANUP,
                Severity.INFO,
                'System Events Deleted',
                f"Deleted {deleted} selected system events",
                metadata={
                    'deletedCount': deleted,
                    'eventIds': list(event_ids),
                    'deletedAt': format_timestamp(utcnow()),
                },
            )
        return deleted

    def initialize_alert_rules(self):
        for rule in DEFAULT_ALERT_RULES:
            self.db.upsert_alert_rule(rule)

    def alert_rules(self) -> List[AlertRule]:
        return self.db.get_alert_rules()
