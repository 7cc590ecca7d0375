import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .analyzer import AlertEvaluator
from .event_store import EventStore
from .models import Event, Severity
from .notifications import DiscordNotifier
from .scheduler import MonitoringScheduler

logger = logging.getLogger(__name__)


@dataclass
class AdminResult:
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    not_found: bool = False

    def to_dict(self) -> Dict[str, Any]:
        key = 'message' if self.success else 'error'
        return {'success': self.success, key: self.message, **self.data}


class AdminControl:
    """
    Operations behind the admin dashboard. Callers are trusted to have
    authorized ``admin_email`` already. Every successful mutation is
    announced on the webhook.
    """

    def __init__(self, evaluator: AlertEvaluator, store: EventStore,
                 notifier: DiscordNotifier, scheduler: Optional[MonitoringScheduler] = None):
        self.evaluator = evaluator
        self.store = store
        self.notifier = notifier
        self.scheduler = scheduler

    def recent_events(self, limit: int = 50, severity: Optional[Severity] = None,
                      user_id: Optional[str] = None) -> List[Event]:
        return self.store.recent(limit=limit, severity=severity, user_id=user_id)

    def event_stats(self, hours: float = 24) -> Dict[str, int]:
        return self.store.stats_since(hours)

    def monitoring_status(self) -> dict:
        if self.scheduler is None:
            return {'isRunning': False, 'intervalExists': False}
        return self.scheduler.status()

    def trigger_checks(self, admin_email: str) -> AdminResult:
        try:
            user_count = self.evaluator.run_checks()
        except Exception:
            logger.exception("System check error")
            return AdminResult(False, 'Failed to run system check')

        self.notifier.send_admin_action_notification(
            'Manual System Check',
            admin_email,
            f"Manually triggered system check for {user_count} users",
            {'userCount': user_count},
        )
        return AdminResult(True, f"System check completed for {user_count} users",
                           {'userCount': user_count})

    def cleanup_old_events(self, admin_email: str, days: int = 30) -> AdminResult:
        try:
            deleted = self.store.delete_older_than(days)
        except Exception:
            logger.exception("Cleanup error")
            return AdminResult(False, 'Failed to cleanup events')

        self.notifier.send_admin_action_notification(
            'Event Cleanup',
            admin_email,
            f"Cleaned up {deleted} old system events",
            {'deletedCount': deleted},
        )
        return AdminResult(True, f"Cleaned up {deleted} old events", {'deletedCount': deleted})

    def delete_event(self, admin_email: str, event_id: str) -> AdminResult:
        if not event_id:
            return AdminResult(False, 'Event ID is required')
        try:
            removed = self.store.delete_by_id(event_id)
        except Exception:
            logger.exception("Delete event error")
            return AdminResult(False, 'Failed to delete event')

        if not removed:
            return AdminResult(False, 'Event not found', not_found=True)

        self.notifier.send_admin_action_notification(
            'Event Deletion',
            admin_email,
            f"Deleted system event with ID: {event_id}",
            {'eventId': event_id},
        )
        return AdminResult(True, 'Event deleted successfully', {'eventId': event_id})

    def clear_all(self, admin_email: str, severity: Optional[Severity] = None) -> AdminResult:
        try:
            deleted = self.store.delete_all(severity)
        except Exception:
            logger.exception("Clear all events error")
            return AdminResult(False, 'Failed to clear events')

        scope = Severity(severity).value if severity else 'ALL'
        details = (
            f"Cleared {scope} system events ({deleted} events deleted)" if severity
            else f"Cleared ALL system events ({deleted} events deleted)"
        )
        self.notifier.send_admin_action_notification(
            'Clear All Events',
            admin_email,
            details,
            {'deletedCount': deleted, 'severity': scope},
        )
        return AdminResult(True, f"Cleared {deleted} events", {'deletedCount': deleted})

    def clear_non_critical(self, admin_email: str) -> AdminResult:
        try:
            deleted = self.store.delete_non_critical()
        except Exception:
            logger.exception("Clear non-critical events error")
            return AdminResult(False, 'Failed to clear non-critical events')

        self.notifier.send_admin_action_notification(
            'Clear Non-Critical Events',
            admin_email,
            f"Cleared non-critical events ({deleted} INFO/WARNING events deleted)",
            {'deletedCount': deleted, 'severity': 'INFO, WARNING'},
        )
        return AdminResult(True, f"Cleared {deleted} non-critical events", {'deletedCount': deleted})
