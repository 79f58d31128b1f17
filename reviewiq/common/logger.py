"""
Application Logger

Logging setup shared by the review scheduling backend. Every module logs
through a child of ``app_logger`` so that a single configuration call
controls level, format and destination for the whole service.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Dict, Any, Optional, Union, Callable, TypeVar

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
APP_LOGGER_NAME = "reviewiq"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'get_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'with_context',
    'app_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    Formatter emitting one JSON object per record.

    Structured context passed through ``extra={"data": {...}}`` (or a
    ``LoggerAdapter``) is merged into the top level of the object, which is
    how batch jobs attach ``batch_id``, ``user_id`` and counters.
    """

    def __init__(self, *, indent: Optional[int] = None):
        super().__init__()
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        log_object = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "name": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_object["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        data = getattr(record, 'data', None)
        if isinstance(data, dict):
            log_object.update(data)

        return json.dumps(log_object, indent=self.indent, default=str)


def configure_logger(
    name: str = APP_LOGGER_NAME,
    level: Union[str, int] = logging.INFO,
    format_string: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure a logger with console and/or file handlers.

    Args:
        name: Logger name
        level: Log level name or number
        format_string: Format used when ``use_json`` is False
        date_format: Date format used when ``use_json`` is False
        use_json: Emit JSON records instead of plain text
        log_file: Optional path of a file to append records to
        console_output: Whether to log to stdout

    Returns:
        The configured logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []

    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(format_string, date_format)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except (FileNotFoundError, PermissionError) as e:
            logger.warning(f"Could not create log file {log_file}: {e}")

    return logger


def get_logger(
    name: str,
    parent: Optional[logging.Logger] = None
) -> logging.Logger:
    """Return ``parent.getChild(name)`` or the named root-level logger."""
    if parent:
        return parent.getChild(name)
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that attaches a fixed context to every record.

    The context ends up under ``record.data`` so that ``JsonFormatter``
    flattens it into the emitted object.
    """

    def __init__(
        self,
        logger: logging.Logger,
        context: Dict[str, Any] = None
    ):
        super().__init__(logger, context or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs = kwargs.copy()
        extra = dict(kwargs.get('extra') or {})
        data = dict(extra.get('data') or {})
        if self.extra:
            for key, value in self.extra.items():
                data.setdefault(key, value)
        extra['data'] = data
        kwargs['extra'] = extra
        return msg, kwargs

    def with_context(self, **context) -> 'LoggerAdapter':
        """Return a new adapter whose context extends this one."""
        new_context = dict(self.extra)
        new_context.update(context)
        return LoggerAdapter(self.logger, new_context)


def with_context(name: str = None, **context) -> LoggerAdapter:
    """Create a ``LoggerAdapter`` for ``name`` (or the app logger) with context."""
    logger = get_logger(name) if name else app_logger
    return LoggerAdapter(logger, context)


def get_app_logger() -> logging.Logger:
    """
    Get or create the application logger.

    The first call configures it from ``LOG_LEVEL``, ``LOG_JSON`` and
    ``LOG_FILE``; later calls return it unchanged.
    """
    logger = logging.getLogger(APP_LOGGER_NAME)

    if not logger.handlers:
        return configure_logger(
            name=APP_LOGGER_NAME,
            level=os.environ.get("LOG_LEVEL", "INFO"),
            use_json=os.environ.get("LOG_JSON", "false").lower() == "true",
            log_file=os.environ.get("LOG_FILE"),
            console_output=True
        )

    return logger


app_logger = get_app_logger()


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator logging how long a sync or async callable took.

    Successful calls are logged at DEBUG, failures at ERROR before the
    exception is re-raised.
    """
    def decorator(func: F) -> F:
        def _report(start_time: float, error: Optional[Exception] = None) -> None:
            elapsed = time.perf_counter() - start_time
            target = logger or get_app_logger()
            if error is None:
                target.debug(f"{func.__name__} executed in {elapsed:.3f} seconds")
            else:
                target.error(f"{func.__name__} failed after {elapsed:.3f} seconds: {error}")

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _report(start_time, e)
                raise
            _report(start_time)
            return result

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _report(start_time, e)
                raise
            _report(start_time)
            return result

        return async_wrapper if asyncio.iscoroutinefunction(func) else wrapper
    return decorator
