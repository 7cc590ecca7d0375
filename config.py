import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ['1', 'true', 'on', 'yes']


ENVIRONMENT = os.environ.get('NODE_ENV') or os.environ.get('ENVIRONMENT', 'development')
DISCORD_WEBHOOK_URL = os.environ.get('DISCORD_WEBHOOK_URL', '')
USE_R2_STORAGE = _env_bool('USE_R2_STORAGE')
UPLOAD_DIR = os.environ.get('UPLOAD_DIR', './uploads')
DB_PATH = os.environ.get('DB_PATH', 'eventwatch.db')
LOG_FILE = os.environ.get('LOG_FILE') or None
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

# 50GB fallback for users without a custom limit
DEFAULT_STORAGE_LIMIT = int(os.environ.get('DEFAULT_STORAGE_LIMIT', str(50 * 1024 ** 3)))

CHECK_INTERVAL_MINUTES = int(os.environ.get('CHECK_INTERVAL_MINUTES', '5'))
CLEANUP_INTERVAL_HOURS = int(os.environ.get('CLEANUP_INTERVAL_HOURS', '24'))
RETENTION_DAYS = int(os.environ.get('RETENTION_DAYS', '30'))
CPU_SAMPLE_INTERVAL = float(os.environ.get('CPU_SAMPLE_INTERVAL', '0'))
WEBHOOK_TIMEOUT = float(os.environ.get('WEBHOOK_TIMEOUT', '5'))


@dataclass
class Settings:
    environment: str = 'development'
    discord_webhook_url: str = ''
    use_remote_storage: bool = False
    upload_dir: str = './uploads'
    db_path: str = 'eventwatch.db'
    log_file: Optional[str] = None
    log_level: str = 'INFO'
    default_storage_limit: int = 50 * 1024 ** 3
    check_interval_minutes: int = 5
    cleanup_interval_hours: int = 24
    retention_days: int = 30
    cpu_sample_interval: float = 0.0
    webhook_timeout: float = 5.0

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            environment=ENVIRONMENT,
            discord_webhook_url=DISCORD_WEBHOOK_URL,
            use_remote_storage=USE_R2_STORAGE,
            upload_dir=UPLOAD_DIR,
            db_path=DB_PATH,
            log_file=LOG_FILE,
            log_level=LOG_LEVEL,
            default_storage_limit=DEFAULT_STORAGE_LIMIT,
            check_interval_minutes=CHECK_INTERVAL_MINUTES,
            cleanup_interval_hours=CLEANUP_INTERVAL_HOURS,
            retention_days=RETENTION_DAYS,
            cpu_sample_interval=CPU_SAMPLE_INTERVAL,
            webhook_timeout=WEBHOOK_TIMEOUT,
        )
