"""Discord webhook delivery for system events and admin actions.

Delivery is best-effort: every public ``send_*`` method returns ``False``
instead of raising when the webhook is unconfigured, rejects the request,
or cannot be reached.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from .models import EventType, Severity, format_timestamp, utcnow

logger = logging.getLogger(__name__)

# Discord caps embed field values at 1024 characters
FIELD_VALUE_LIMIT = 1024

SEVERITY_COLORS = {
    Severity.CRITICAL: 0xff0000,
    Severity.ERROR: 0xff6b35,
    Severity.WARNING: 0xffb347,
    Severity.INFO: 0x3498db,
}
DEFAULT_COLOR = 0x95a5a6
ADMIN_COLOR = 0x9b59b6

SEVERITY_EMOJIS = {
    Severity.CRITICAL: '🚨',
    Severity.ERROR: '❌',
    Severity.WARNING: '⚠️',
    Severity.INFO: 'ℹ️',
}
DEFAULT_SEVERITY_EMOJI = '📝'

EVENT_TYPE_EMOJIS = {
    EventType.USER_STORAGE_WARNING: '💾',
    EventType.USER_STORAGE_CRITICAL: '💾',
    EventType.USER_FILE_LIMIT_WARNING: '📁',
    EventType.USER_FILE_LIMIT_CRITICAL: '📁',
    EventType.SYSTEM_STORAGE_WARNING: '🖥️',
    EventType.SYSTEM_STORAGE_CRITICAL: '🖥️',
    EventType.HIGH_CPU_USAGE: '⚡',
    EventType.HIGH_MEMORY_USAGE: '🧠',
    EventType.SYSTEM_ERROR: '💥',
    EventType.FAILED_UPLOAD: '📤',
    EventType.BULK_STORAGE_CLEANUP: '🧹',
    EventType.USER_REGISTRATION: '👋',
}
DEFAULT_TYPE_EMOJI = '📋'


def _enum_value(value) -> str:
    return getattr(value, 'value', value)


def get_embed_color(severity) -> int:
    return SEVERITY_COLORS.get(_coerce_severity(severity), DEFAULT_COLOR)


def get_severity_emoji(severity) -> str:
    return SEVERITY_EMOJIS.get(_coerce_severity(severity), DEFAULT_SEVERITY_EMOJI)


def get_event_type_emoji(event_type) -> str:
    try:
        return EVENT_TYPE_EMOJIS.get(EventType(_enum_value(event_type)), DEFAULT_TYPE_EMOJI)
    except ValueError:
        return DEFAULT_TYPE_EMOJI


def format_event_type(event_type) -> str:
    """USER_STORAGE_WARNING -> User Storage Warning"""
    return ' '.join(word[:1] + word[1:].lower() for word in _enum_value(event_type).split('_'))


def _coerce_severity(severity) -> Optional[Severity]:
    try:
        return Severity(_enum_value(severity))
    except ValueError:
        return None


def format_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    """Render metadata as ``**key:** value`` lines, or None when empty or too large for a field."""
    if not metadata:
        return None
    text = '\n'.join(f"**{key}:** {_format_value(value)}" for key, value in metadata.items())
    if len(text) > FIELD_VALUE_LIMIT:
        return None
    return text


def _format_value(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    return str(value)


class DiscordNotifier:
    def __init__(self, webhook_url: str = '', environment: str = 'development',
                 client: Optional[httpx.Client] = None, timeout: float = 5.0,
                 app_name: str = 'eventwatch'):
        self.webhook_url = webhook_url
        self.environment = environment
        self.client = client
        self.timeout = timeout
        self.app_name = app_name

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def _environment_label(self) -> str:
        return '🚀 Production' if self.environment == 'production' else '🧪 Development'

    def build_event_embed(self, event_type, severity, title: str, message: str,
                          metadata: Optional[Dict[str, Any]] = None,
                          user_email: Optional[str] = None,
                          cpu_usage: Optional[float] = None,
                          memory_usage: Optional[float] = None,
                          disk_usage: Optional[float] = None) -> Dict[str, Any]:
        severity_emoji = get_severity_emoji(severity)
        fields: List[Dict[str, Any]] = [
            {
                'name': '📋 Event Type',
                'value': f"{get_event_type_emoji(event_type)} {format_event_type(event_type)}",
                'inline': True,
            },
            {
                'name': '🔥 Severity',
                'value': f"{severity_emoji} {_enum_value(severity)}",
                'inline': True,
            },
        ]

        if user_email:
            fields.append({'name': '👤 User', 'value': user_email, 'inline': True})

        metrics = []
        if cpu_usage is not None:
            metrics.append(f"CPU: {cpu_usage:.1f}%")
        if memory_usage is not None:
            metrics.append(f"Memory: {memory_usage:.1f}%")
        if disk_usage is not None:
            metrics.append(f"Disk: {disk_usage:.1f}%")
        if metrics:
            fields.append({'name': '📊 System Metrics', 'value': '\n'.join(metrics), 'inline': False})

        details = format_metadata(metadata)
        if details is not None:
            fields.append({'name': '🔍 Details', 'value': details, 'inline': False})

        fields.append({'name': '🌐 Environment', 'value': self._environment_label(), 'inline': True})

        return {
            'title': f"{severity_emoji} {title}",
            'description': message,
            'color': get_embed_color(severity),
            'timestamp': format_timestamp(utcnow()),
            'fields': fields,
            'footer': {'text': f"{self.app_name} System Monitor"},
            'author': {'name': 'System Events'},
        }

    def build_admin_embed(self, action: str, admin_email: str, details: str,
                          metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        fields = [
            {'name': '👤 Admin', 'value': admin_email, 'inline': True},
            {'name': '🔧 Action', 'value': action, 'inline': True},
            {'name': '🌐 Environment', 'value': self._environment_label(), 'inline': True},
        ]
        extra = format_metadata(metadata)
        if extra is not None:
            fields.append({'name': '📋 Details', 'value': extra, 'inline': False})

        return {
            'title': '🛠️ Admin Action Performed',
            'description': details,
            'color': ADMIN_COLOR,
            'timestamp': format_timestamp(utcnow()),
            'fields': fields,
            'footer': {'text': f"{self.app_name} Admin Panel"},
            'author': {'name': 'Admin Actions'},
        }

    def _post(self, payload: Dict[str, Any], label: str) -> bool:
        try:
            if self.client is not None:
                response = self.client.post(self.webhook_url, json=payload, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.webhook_url, json=payload)
        except Exception as e:
            logger.error(f"Error sending Discord notification ({label}): {e}")
            return False

        if not response.is_success:
            logger.error(
                f"Failed to send Discord notification ({label}): {response.status_code} {response.reason_phrase}"
            )
            return False

        logger.info(f"Discord notification sent: {label}")
        return True

    def send_event_notification(self, event_type, severity, title: str, message: str,
                                metadata: Optional[Dict[str, Any]] = None,
                                user_email: Optional[str] = None,
                                cpu_usage: Optional[float] = None,
                                memory_usage: Optional[float] = None,
                                disk_usage: Optional[float] = None) -> bool:
        if not self.enabled:
            logger.debug("Discord webhook URL not configured, skipping notification")
            return False

        try:
            embed = self.build_event_embed(
                event_type, severity, title, message,
                metadata=metadata, user_email=user_email,
                cpu_usage=cpu_usage, memory_usage=memory_usage, disk_usage=disk_usage,
            )
        except Exception as e:
            logger.error(f"Could not build Discord embed for {_enum_value(event_type)}: {e}")
            return False

        payload = {'embeds': [embed], 'username': f"{self.app_name} Monitor"}
        return self._post(payload, f"{_enum_value(severity)} event: {title}")

    def send_critical_event_notification(self, event_type, severity, title: str, message: str,
                                         **options) -> bool:
        """Forward only CRITICAL and ERROR events; anything else is a silent no-op."""
        level = _coerce_severity(severity)
        if level is None or level.rank < Severity.ERROR.rank:
            return False
        return self.send_event_notification(event_type, severity, title, message, **options)

    def send_admin_action_notification(self, action: str, admin_email: str, details: str,
                                       metadata: Optional[Dict[str, Any]] = None) -> bool:
        if not self.enabled:
            return False

        try:
            embed = self.build_admin_embed(action, admin_email, details, metadata)
        except Exception as e:
            logger.error(f"Could not build Discord embed for admin action {action}: {e}")
            return False
        payload = {'embeds': [embed], 'username': f"{self.app_name} Admin"}
        return self._post(payload, f"admin action: {action}")
