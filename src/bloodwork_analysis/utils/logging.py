# ============================================================================
# src/bloodwork_analysis/utils/logging.py
# ============================================================================
"""
Logging setup for the analysis service.

Plain text lines for local runs, one JSON object per line when
LOG_JSON is set. Pipeline code logs through LogAdapter so every line of
a job carries its id.
"""

import functools
import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# HTTP client libraries log every request at INFO
NOISY_LOGGERS = ("aiohttp.access", "httpx", "openai", "pdfminer")

# Every LogRecord has these; anything else came in through `extra`
_STANDARD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    format_json: bool = False,
    quiet: Iterable[str] = NOISY_LOGGERS
) -> None:
    """
    Configure the root logger. Safe to call more than once.

    Args:
        level: Level name; unknown names fall back to INFO
        log_file: Also write to this file when given
        format_json: Emit JSON lines instead of text
        quiet: Loggers capped at WARNING
    """
    formatter: logging.Formatter
    if format_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        handlers=handlers,
        force=True
    )

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


class JsonFormatter(logging.Formatter):
    """One JSON object per record; `extra` fields go under "extra"."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        context = {
            key: value for key, value in vars(record).items()
            if key not in _STANDARD_FIELDS and not key.startswith('_')
        }
        if context:
            entry['extra'] = context

        return json.dumps(entry, default=str)


def log_performance(logger: logging.Logger, operation: str):
    """Decorator: debug-log how long a call took, error-log when it raised."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{operation} failed after {time.perf_counter() - started:.3f}s: {e}")
                raise
            logger.debug(f"{operation} completed in {time.perf_counter() - started:.3f}s")
            return result
        return wrapper
    return decorator


class LogAdapter(logging.LoggerAdapter):
    """Prefixes messages with "[job <id>]" and attaches the adapter context as `extra`."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}

        job_id = self.extra.get('job_id')
        if job_id:
            msg = f"[job {job_id}] {msg}"
        return msg, kwargs
