"""
Central Log - forwards log records to the logs blob store and purges old entries
"""
import logging
import secrets
import string
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from eol_checker import config
from eol_checker.services.blob_store import BlobStore, get_log_store

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
VALID_LEVELS = ('DEBUG', 'INFO', 'WARN', 'WARNING', 'ERROR', 'CRITICAL')

_ALPHABET = string.ascii_lowercase + string.digits
_emitting = threading.local()


def make_log_key(now: datetime) -> str:
    random_part = ''.join(secrets.choice(_ALPHABET) for _ in range(8))
    return f"logs-{now.strftime('%Y-%m-%d')}-{int(now.timestamp() * 1000)}-{random_part}.json"


def write_log_entry(store: BlobStore, level: str, source: str, message: str,
                    context: Optional[Dict[str, Any]] = None,
                    timestamp: Optional[datetime] = None) -> str:
    """Store one {timestamp, level, source, message, context} entry and return its key."""
    now = timestamp or datetime.now(timezone.utc)
    key = make_log_key(now)
    store.set(key, {
        'timestamp': now.isoformat().replace('+00:00', 'Z'),
        'level': level.upper(),
        'source': source,
        'message': message,
        'context': context or {},
    })
    return key


def purge_old_logs(store: Optional[BlobStore] = None, retention_days: int = config.LOG_RETENTION_DAYS,
                   clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> int:
    """Delete log entries from days before the retention window. Returns the count deleted."""
    store = store or get_log_store()
    cutoff = (clock() - timedelta(days=retention_days)).strftime('%Y-%m-%d')
    deleted = 0
    for key in store.list(prefix='logs-'):
        day = key[len('logs-'):len('logs-') + 10]
        if day < cutoff and store.delete(key):
            deleted += 1
    logging.getLogger(__name__).info(f"Purged {deleted} log entries older than {cutoff}")
    return deleted


class CentralLogHandler(logging.Handler):
    """
    Writes records to the logs store. Delivery is fire-and-forget: failures
    go to handleError and never reach the caller.
    """

    def __init__(self, store: Optional[BlobStore] = None, source: str = 'eol-checker',
                 level: int = logging.INFO):
        super().__init__(level)
        self.store = store or get_log_store()
        self.source = source

    def emit(self, record: logging.LogRecord) -> None:
        # Writing a log entry logs through SQLAlchemy; don't recurse
        if getattr(_emitting, 'active', False):
            return
        _emitting.active = True
        try:
            context = {'logger': record.name}
            if record.exc_info:
                context['exception'] = self.formatter.formatException(record.exc_info) if self.formatter \
                    else logging.Formatter().formatException(record.exc_info)
            write_log_entry(self.store, record.levelname, self.source, record.getMessage(), context,
                            timestamp=datetime.fromtimestamp(record.created, timezone.utc))
        except Exception:
            self.handleError(record)
        finally:
            _emitting.active = False


def configure_logging(level: str = 'INFO', central: bool = False) -> None:
    """Configure root logging once; optionally add the central handler."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    has_central = any(isinstance(h, CentralLogHandler) for h in root.handlers)
    if central and not has_central:
        handler = CentralLogHandler()
        handler.addFilter(lambda record: not record.name.startswith(('sqlalchemy', 'werkzeug', 'urllib3')))
        root.addHandler(handler)
    elif not central and has_central:
        for handler in [h for h in root.handlers if isinstance(h, CentralLogHandler)]:
            root.removeHandler(handler)
