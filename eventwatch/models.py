from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    USER_STORAGE_WARNING = 'USER_STORAGE_WARNING'
    USER_STORAGE_CRITICAL = 'USER_STORAGE_CRITICAL'
    USER_FILE_LIMIT_WARNING = 'USER_FILE_LIMIT_WARNING'
    USER_FILE_LIMIT_CRITICAL = 'USER_FILE_LIMIT_CRITICAL'
    SYSTEM_STORAGE_WARNING = 'SYSTEM_STORAGE_WARNING'
    SYSTEM_STORAGE_CRITICAL = 'SYSTEM_STORAGE_CRITICAL'
    HIGH_CPU_USAGE = 'HIGH_CPU_USAGE'
    HIGH_MEMORY_USAGE = 'HIGH_MEMORY_USAGE'
    SYSTEM_ERROR = 'SYSTEM_ERROR'
    FAILED_UPLOAD = 'FAILED_UPLOAD'
    BULK_STORAGE_CLEANUP = 'BULK_STORAGE_CLEANUP'
    USER_REGISTRATION = 'USER_REGISTRATION'


class Severity(str, Enum):
    INFO = 'INFO'
    WARNING = 'WARNING'
    ERROR = 'ERROR'
    CRITICAL = 'CRITICAL'

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.INFO, Severity.WARNING, Severity.ERROR, Severity.CRITICAL]

# Severities the "safe cleanup" admin operation removes
NON_CRITICAL_SEVERITIES = (Severity.INFO, Severity.WARNING)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    # Fixed width so stored timestamps sort lexicographically
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f+00:00')


@dataclass
class SystemMetrics:
    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    disk_usage: float = 0.0
    total_memory: int = 0
    free_memory: int = 0
    uptime: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cpuUsage': self.cpu_usage,
            'memoryUsage': self.memory_usage,
            'diskUsage': self.disk_usage,
            'totalMemory': self.total_memory,
            'freeMemory': self.free_memory,
            'uptime': self.uptime,
        }


@dataclass
class Event:
    type: EventType
    severity: Severity
    title: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    cpu_usage: Optional[float] = None
    memory_usage: Optional[float] = None
    disk_usage: Optional[float] = None
    created_at: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'severity': self.severity.value,
            'title': self.title,
            'message': self.message,
            'metadata': self.metadata,
            'userId': self.user_id,
            'cpuUsage': self.cpu_usage,
            'memoryUsage': self.memory_usage,
            'diskUsage': self.disk_usage,
            'createdAt': self.created_at,
        }


@dataclass
class AlertRule:
    id: str
    event_type: EventType
    threshold: float
    name: str
    enabled: bool = True
    description: Optional[str] = None
    notify_user: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['event_type'] = self.event_type.value
        return data


@dataclass
class UserUsage:
    """Storage figures for one user, summed from their uploads."""
    user_id: str
    email: Optional[str]
    storage_used: int
    file_count: int
    max_storage_limit: Optional[int]
    max_uploads: int
