import logging
from typing import List, Optional

from .error_handling import AppError
from .event_store import EventStore
from .logging_db import DatabaseManager
from .models import Event, EventType, Severity, SystemMetrics
from .monitor_base import MonitorBase

logger = logging.getLogger(__name__)

# Fixed trigger points. The alert_rules table mirrors these but is not consulted here.
CPU_THRESHOLD = 90.0
MEMORY_THRESHOLD = 90.0
DISK_CRITICAL_THRESHOLD = 95.0
DISK_WARNING_THRESHOLD = 80.0
USAGE_CRITICAL_THRESHOLD = 95.0
USAGE_WARNING_THRESHOLD = 80.0
UPLOAD_ALERT_THRESHOLD = 90.0


def _percent(value, limit) -> float:
    if not limit:
        return 0.0
    return value / limit * 100


class AlertEvaluator:
    """Compares fresh metrics and per-user usage against thresholds and records events."""

    def __init__(self, db: DatabaseManager, store: EventStore, monitor: MonitorBase,
                 use_remote_storage: bool = False, default_storage_limit: int = 50 * 1024 ** 3):
        self.db = db
        self.store = store
        self.monitor = monitor
        self.use_remote_storage = use_remote_storage
        self.default_storage_limit = default_storage_limit

    def run_checks(self) -> int:
        """One evaluation pass: system-wide checks, then every known user. Returns the user count."""
        logger.info("Running system checks...")
        # One snapshot per pass, shared by every event it records
        metrics = self.monitor.sample()
        self.evaluate_system(metrics)

        user_ids = self.db.list_user_ids()
        for user_id in user_ids:
            try:
                self.evaluate_user(user_id, metrics=metrics)
            except AppError as e:
                logger.error(f"Could not record alerts for user {user_id}: {e}")

        logger.info(f"System checks completed for {len(user_ids)} users")
        return len(user_ids)

    def evaluate_system(self, metrics: Optional[SystemMetrics] = None) -> List[Event]:
        if metrics is None:
            metrics = self.monitor.sample()
        events = []

        if not self.use_remote_storage:
            if metrics.disk_usage >= DISK_CRITICAL_THRESHOLD:
                events.append(self.store.create(
                    EventType.SYSTEM_STORAGE_CRITICAL,
                    Severity.CRITICAL,
                    'System Storage Critical',
                    f"Server disk usage is at {metrics.disk_usage:.1f}%",
                    metadata={'diskUsage': metrics.disk_usage},
                    metrics=metrics,
                ))
            elif metrics.disk_usage >= DISK_WARNING_THRESHOLD:
                events.append(self.store.create(
                    EventType.SYSTEM_STORAGE_WARNING,
                    Severity.WARNING,
                    'System Storage Warning',
                    f"Server disk usage is at {metrics.disk_usage:.1f}%",
                    metadata={'diskUsage': metrics.disk_usage},
                    metrics=metrics,
                ))

        if metrics.cpu_usage >= CPU_THRESHOLD:
            events.append(self.store.create(
                EventType.HIGH_CPU_USAGE,
                Severity.ERROR,
                'High CPU Usage',
                f"Server CPU usage is at {metrics.cpu_usage:.1f}%",
                metadata={'cpuUsage': metrics.cpu_usage},
                metrics=metrics,
            ))

        if metrics.memory_usage >= MEMORY_THRESHOLD:
            events.append(self.store.create(
                EventType.HIGH_MEMORY_USAGE,
                Severity.ERROR,
                'High Memory Usage',
                f"Server memory usage is at {metrics.memory_usage:.1f}%",
                metadata={
                    'memoryUsage': metrics.memory_usage,
                    'totalMemory': metrics.total_memory,
                    'freeMemory': metrics.free_memory,
                },
                metrics=metrics,
            ))

        return events

    def evaluate_user(self, user_id: str, metrics: Optional[SystemMetrics] = None) -> List[Event]:
        """
        Storage and file-count checks for one user.

        A failed usage lookup is recorded as a SYSTEM_ERROR event. Failures while
        writing alert events or the cached counter raise ``PersistenceError``.
        """
        try:
            usage = self.db.get_user_usage(user_id)
        except Exception as e:
            logger.error(f"Failed to evaluate storage for user {user_id}: {e}")
            self._record_user_failure(user_id, e)
            return []
        if usage is None:
            return []

        events = []
        storage_limit = usage.max_storage_limit or self.default_storage_limit
        storage_percent = _percent(usage.storage_used, storage_limit)
        storage_metadata = {
            'storageUsed': usage.storage_used,
            'storageLimit': storage_limit,
            'usagePercent': storage_percent,
        }

        if storage_percent >= USAGE_CRITICAL_THRESHOLD:
            events.append(self.store.create(
                EventType.USER_STORAGE_CRITICAL,
                Severity.CRITICAL,
                'User Storage Critical',
                f"User {usage.email} has used {storage_percent:.1f}% of their storage limit",
                user_id=user_id,
                metadata=storage_metadata,
                metrics=metrics,
            ))
        elif storage_percent >= USAGE_WARNING_THRESHOLD:
            events.append(self.store.create(
                EventType.USER_STORAGE_WARNING,
                Severity.WARNING,
                'User Storage Warning',
                f"User {usage.email} has used {storage_percent:.1f}% of their storage limit",
                user_id=user_id,
                metadata=storage_metadata,
                metrics=metrics,
            ))

        file_percent = _percent(usage.file_count, usage.max_uploads)
        file_metadata = {
            'fileCount': usage.file_count,
            'maxUploads': usage.max_uploads,
            'usagePercent': file_percent,
        }
        file_message = (
            f"User {usage.email} has uploaded {usage.file_count}/{usage.max_uploads} files "
            f"({file_percent:.1f}%)"
        )

        if file_percent >= USAGE_CRITICAL_THRESHOLD:
            events.append(self.store.create(
                EventType.USER_FILE_LIMIT_CRITICAL,
                Severity.CRITICAL,
                'User File Limit Critical',
                file_message,
                user_id=user_id,
                metadata=file_metadata,
                metrics=metrics,
            ))
        elif file_percent >= USAGE_WARNING_THRESHOLD:
            events.append(self.store.create(
                EventType.USER_FILE_LIMIT_WARNING,
                Severity.WARNING,
                'User File Limit Warning',
                file_message,
                user_id=user_id,
                metadata=file_metadata,
                metrics=metrics,
            ))

        # Keep the cached counter in sync with the sum over uploads
        self.db.update_storage_used(user_id, usage.storage_used)
        return events

    def _record_user_failure(self, user_id: str, error: Exception):
        try:
            self.store.create(
                EventType.SYSTEM_ERROR,
                Severity.ERROR,
                'User Evaluation Failed',
                f"Failed to check storage alerts for user {user_id}: {error}",
                metadata={'userId': user_id, 'error': str(error)},
            )
        except Exception as e:
            logger.error(f"Could not record evaluation failure for user {user_id}: {e}")

    def evaluate_upload(self, user_id: str, file_size: int) -> List[Event]:
        """
        Alert when an upload about to be recorded pushes a user across 90% of a limit.
        Call before the upload row is stored; never raises.
        """
        events = []
        try:
            usage = self.db.get_user_usage(user_id)
            if usage is None:
                return events

            storage_limit = usage.max_storage_limit or self.default_storage_limit
            # Cached counter as it stood before this upload
            previous_used = self.db.get_user_storage_used(user_id) or 0
            new_used = previous_used + file_size
            before = _percent(previous_used, storage_limit)
            after = _percent(new_used, storage_limit)

            if after >= UPLOAD_ALERT_THRESHOLD and before < UPLOAD_ALERT_THRESHOLD:
                events.append(self.store.create(
                    EventType.USER_STORAGE_WARNING,
                    Severity.WARNING,
                    'User Approaching Storage Limit',
                    f"User {usage.email} has reached {after:.1f}% of their storage limit after recent upload",
                    user_id=user_id,
                    metadata={
                        'storageUsed': new_used,
                        'storageLimit': storage_limit,
                        'usagePercent': after,
                        'triggerUpload': True,
                    },
                ))

            file_count = usage.file_count + 1
            files_before = _percent(usage.file_count, usage.max_uploads)
            files_after = _percent(file_count, usage.max_uploads)
            if files_after >= UPLOAD_ALERT_THRESHOLD and files_before < UPLOAD_ALERT_THRESHOLD:
                events.append(self.store.create(
                    EventType.USER_FILE_LIMIT_WARNING,
                    Severity.WARNING,
                    'User Approaching File Limit',
                    f"User {usage.email} has uploaded {file_count}/{usage.max_uploads} files "
                    f"({files_after:.1f}%)",
                    user_id=user_id,
                    metadata={
                        'fileCount': file_count,
                        'maxUploads': usage.max_uploads,
                        'usagePercent': files_after,
                        'triggerUpload': True,
                    },
                ))
        except Exception as e:
            logger.error(f"Error monitoring upload event for user {user_id}: {e}")
        return events

    def record_failed_upload(self, user_id: Optional[str], reason: str,
                             metadata: Optional[dict] = None) -> Optional[Event]:
        try:
            return self.store.create(
                EventType.FAILED_UPLOAD,
                Severity.WARNING,
                'Upload Failed',
                f"Upload failed: {reason}",
                user_id=user_id,
                metadata={'reason': reason, **(metadata or {})},
            )
        except Exception as e:
            logger.error(f"Error monitoring failed upload: {e}")
            return None

    def record_user_registration(self, user_id: str, email: str, name: Optional[str] = None,
                                 provider: str = 'Discord') -> Optional[Event]:
        try:
            return self.store.create(
                EventType.USER_REGISTRATION,
                Severity.INFO,
                'New User Registration',
                f"New user registered: {email}",
                user_id=user_id,
                metadata={'name': name, 'provider': provider},
            )
        except Exception as e:
            logger.error(f"Failed to record user registration for {email}: {e}")
            return None
