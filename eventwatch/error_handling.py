import functools
import logging
import traceback

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(settings):
    """Configure root logging from settings. Logs to stderr unless a log file is set."""
    kwargs = {
        'level': getattr(logging, str(settings.log_level).upper(), logging.INFO),
        'format': LOG_FORMAT,
    }
    if settings.log_file:
        kwargs['filename'] = settings.log_file
    logging.basicConfig(**kwargs)


def safe_execute(default_return=None):
    """
    Decorator to wrap functions in a try/except block.
    Logs errors and returns a default value on failure.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in {func.__name__}: {str(e)}")
                logger.debug(traceback.format_exc())
                return default_return
        return wrapper
    return decorator


class AppError(Exception):
    """Base custom exception class."""
    pass


class PersistenceError(AppError):
    """A database read or write failed; the condition was not durably recorded."""
    pass
