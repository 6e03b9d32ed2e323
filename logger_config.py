"""
Unified logging configuration for the word arithmetic engine.
Features:
- Category-based log organization (embeddings, budget, ranking, api, system)
- Structured JSON logging format for log files
- Optional asynchronous file logging
- Credential sanitization
- Memory handler for tests
- Runtime log level adjustment

Nothing is written to disk until ``configure_logging`` is given a log
directory; until then records go to the console and the memory handler only.
"""
import os
import sys
import re
import time
import json
import uuid
import queue
import atexit
import logging
import threading
import traceback
import logging.handlers
from typing import Dict, Any, Optional, List, Callable, Union
from datetime import datetime, timezone
from pathlib import Path
from functools import wraps
import socket

# Root of the project's logger hierarchy
ROOT_LOGGER_NAME = "wordmath"

# Default logging levels
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_CONSOLE_LEVEL = logging.WARNING
DEFAULT_FILE_LEVEL = logging.DEBUG

# Default log filename format
DEFAULT_LOG_FILENAME_FORMAT = "%Y-%m-%d_%H-%M-%S.log"

# Performance monitoring constants
SLOW_EXECUTION_THRESHOLD = 0.5  # seconds

# Secrets that must never reach a log file
SECRET_PATTERNS = {
    'bearer': re.compile(r'Bearer\s+[A-Za-z0-9_\-\.=]+'),
    'hf_token': re.compile(r'\bhf_[A-Za-z0-9]{8,}\b'),
    'email': re.compile(r'[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+'),
}

# Log categories and their subdirectories
LOG_CATEGORIES = {
    "embeddings": "embeddings",
    "budget": "budget",
    "ranking": "ranking",
    "api": "api",
    "system": "system"
}

DEFAULT_FORMATTERS = {
    'detailed': {
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
        'datefmt': '%Y-%m-%d %H:%M:%S'
    },
    'simple': {
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'datefmt': '%Y-%m-%d %H:%M:%S'
    }
}


# In-memory handler for tests
class MemoryHandler(logging.Handler):
    """Custom handler that keeps log records in memory for testing."""
    def __init__(self, capacity: int = 1000):
        super().__init__()
        self.capacity = capacity
        self.records = []

    def emit(self, record):
        self.records.append(self.format(record))
        if len(self.records) > self.capacity:
            del self.records[0]

    def get_records(self):
        return self.records

    def clear(self):
        self.records = []


# Global memory handler for tests
memory_handler = MemoryHandler()


class JsonFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings for structured logging.
    """
    # LogRecord attributes that are reported under their own keys or not at all
    _RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

    def __init__(self, include_extra_fields: bool = True, sanitize: bool = True):
        """
        Initialize JSON formatter.

        Args:
            include_extra_fields: Whether to include extra fields added to LogRecord
            sanitize: Whether to mask credentials in log messages
        """
        super().__init__()
        self.include_extra_fields = include_extra_fields
        self.sanitize = sanitize

        # System info for context
        self.hostname = socket.gethostname()
        self.pid = os.getpid()

    def format(self, record):
        """
        Format the specified record as structured JSON.

        Args:
            record: LogRecord to format

        Returns:
            Formatted JSON string
        """
        log_object = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'name': record.name,
            'level': record.levelname,
            'message': record.getMessage(),
            'path': record.pathname,
            'line': record.lineno,
            'function': record.funcName,
            'process': self.pid,
            'thread_name': record.threadName,
            'hostname': self.hostname,
        }

        if record.exc_info:
            log_object['exception'] = {
                'type': str(record.exc_info[0].__name__),
                'message': str(record.exc_info[1]),
                'traceback': ''.join(traceback.format_exception(*record.exc_info))
            }

        if hasattr(record, 'execution_time'):
            log_object['execution_time_ms'] = record.execution_time * 1000

        # Add custom fields from record
        if self.include_extra_fields:
            for key, value in record.__dict__.items():
                if key in log_object or key in self._RESERVED or key.startswith('_'):
                    continue
                if isinstance(value, (str, int, float, bool)) or value is None:
                    log_object[key] = value
                elif isinstance(value, (list, dict)):
                    try:
                        json.dumps(value)
                        log_object[key] = value
                    except (TypeError, OverflowError):
                        log_object[key] = str(value)

        if self.sanitize:
            log_object = self._sanitize(log_object)

        return json.dumps(log_object, ensure_ascii=False)

    def _sanitize(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: self._sanitize(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [self._sanitize(v) for v in obj]
        if isinstance(obj, str):
            return sanitize_string(obj)
        return obj


def sanitize_string(text: str) -> str:
    """Replace anything that looks like a credential with a placeholder."""
    for name, pattern in SECRET_PATTERNS.items():
        text = pattern.sub(f"[REDACTED_{name.upper()}]", text)
    return text


class LoggerConfig:
    """
    Unified logging configuration manager for the word arithmetic engine.

    Handlers are attached to the ``wordmath`` logger, so every module logger
    named ``wordmath.*`` shares them. File handlers, one per category, exist
    only once ``configure(log_dir=...)`` has been called.
    """

    _instance = None
    _initialized = False
    _context_stack = threading.local()

    def __new__(cls, *args, **kwargs):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super(LoggerConfig, cls).__new__(cls)
        return cls._instance

    def __init__(
        self,
        log_level: int = DEFAULT_LOG_LEVEL,
        console_level: int = DEFAULT_CONSOLE_LEVEL,
        file_level: int = DEFAULT_FILE_LEVEL,
        enable_console: bool = True,
    ):
        """
        Initialize the logging configuration.

        Args:
            log_level: Overall logging level (default: logging.INFO)
            console_level: Console logging level (default: logging.WARNING)
            file_level: File logging level (default: logging.DEBUG)
            enable_console: Whether to enable console logging (default: True)
        """
        # Only initialize once (singleton)
        if LoggerConfig._initialized:
            return

        self.log_dir: Optional[Path] = None
        self.log_level = log_level
        self.console_level = console_level
        self.file_level = file_level
        self.enable_json = True
        self.sanitize = True

        self.console_handler: Optional[logging.Handler] = None
        self.category_handlers: Dict[str, logging.Handler] = {}
        self._listener: Optional[logging.handlers.QueueListener] = None
        self._queue_handler: Optional[logging.Handler] = None
        self._lock = threading.RLock()

        # Generate run ID for this logging session
        self.run_id = str(uuid.uuid4())
        self.start_time = datetime.now()

        self._context_filter = _ContextFilter(self)

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(self.log_level)

        if enable_console:
            self.console_handler = logging.StreamHandler(sys.stderr)
            self.console_handler.setLevel(self.console_level)
            self.console_handler.addFilter(self._context_filter)
            self.console_handler.setFormatter(logging.Formatter(
                DEFAULT_FORMATTERS['simple']['format'], DEFAULT_FORMATTERS['simple']['datefmt']))
            root.addHandler(self.console_handler)

        memory_handler.setLevel(logging.DEBUG)
        memory_handler.setFormatter(logging.Formatter(DEFAULT_FORMATTERS['detailed']['format']))
        memory_handler.addFilter(self._context_filter)
        if memory_handler not in root.handlers:
            root.addHandler(memory_handler)

        LoggerConfig._initialized = True

    def configure(
        self,
        log_dir: Optional[Union[str, Path]] = None,
        level: Optional[Union[int, str]] = None,
        enable_json: bool = True,
        enable_async: bool = False,
        sanitize: bool = True,
    ) -> None:
        """
        (Re)configure logging at runtime.

        Args:
            log_dir: Directory for category log files; None keeps logging off disk
            level: Overall logging level (name or number)
            enable_json: Use JSON format for file logs
            enable_async: Write file logs from a background thread
            sanitize: Mask credentials in file logs
        """
        with self._lock:
            if level is not None:
                self.update_levels(log_level=_coerce_level(level))
            self.enable_json = enable_json
            self.sanitize = sanitize

            self._remove_file_handlers()
            if log_dir is None:
                self.log_dir = None
                return

            self.log_dir = Path(log_dir).expanduser()
            timestamp = datetime.now().strftime(DEFAULT_LOG_FILENAME_FORMAT)
            for category, subdir in LOG_CATEGORIES.items():
                category_dir = self.log_dir / subdir
                category_dir.mkdir(parents=True, exist_ok=True)
                handler = logging.FileHandler(category_dir / f"{category}_{timestamp}", encoding="utf-8")
                handler.setLevel(self.file_level)
                if self.enable_json:
                    handler.setFormatter(JsonFormatter(sanitize=self.sanitize))
                else:
                    handler.setFormatter(logging.Formatter(DEFAULT_FORMATTERS['detailed']['format']))
                handler.addFilter(_CategoryFilter(category))
                handler.addFilter(self._context_filter)
                self.category_handlers[category] = handler

            root = logging.getLogger(ROOT_LOGGER_NAME)
            handlers = list(self.category_handlers.values())
            if enable_async:
                log_queue: queue.Queue = queue.Queue(-1)
                self._queue_handler = logging.handlers.QueueHandler(log_queue)
                self._queue_handler.addFilter(self._context_filter)
                self._listener = logging.handlers.QueueListener(log_queue, *handlers,
                                                                respect_handler_level=True)
                self._listener.start()
                root.addHandler(self._queue_handler)
            else:
                for handler in handlers:
                    root.addHandler(handler)

            self.get_logger(f"{ROOT_LOGGER_NAME}.logging", "system").info(
                f"File logging enabled: run_id={self.run_id}, dir={self.log_dir}, pid={os.getpid()}"
            )

    def _remove_file_handlers(self) -> None:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        if self._queue_handler is not None:
            root.removeHandler(self._queue_handler)
            self._queue_handler = None
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        for handler in self.category_handlers.values():
            root.removeHandler(handler)
            handler.close()
        self.category_handlers.clear()

    def get_logger(self, name: str, category: Optional[str] = None) -> logging.Logger:
        """
        Get a logger with the specified name and category.

        Args:
            name: Name of the logger, normally under ``wordmath.``
            category: Category whose log file receives this logger's records

        Returns:
            Configured Logger instance
        """
        if category is not None and category not in LOG_CATEGORIES:
            raise ValueError(f"Unknown log category: {category}")
        logger = logging.getLogger(name)
        if category is not None:
            _LOGGER_CATEGORIES[name] = category
        return logger

    def update_levels(
        self,
        log_level: Optional[int] = None,
        console_level: Optional[int] = None,
        file_level: Optional[int] = None
    ) -> None:
        """
        Update logging levels for existing handlers.

        Args:
            log_level: New overall logging level (or None to leave unchanged)
            console_level: New console logging level (or None to leave unchanged)
            file_level: New file logging level (or None to leave unchanged)
        """
        if log_level is not None:
            self.log_level = log_level
            logging.getLogger(ROOT_LOGGER_NAME).setLevel(log_level)
        if console_level is not None:
            self.console_level = console_level
            if self.console_handler is not None:
                self.console_handler.setLevel(console_level)
        if file_level is not None:
            self.file_level = file_level
            for handler in self.category_handlers.values():
                handler.setLevel(file_level)

    def shutdown(self) -> None:
        with self._lock:
            self._remove_file_handlers()

    def add_context(self, **kwargs) -> None:
        """
        Add context values that will be included in all log records.

        Args:
            **kwargs: Key-value pairs to add to the context
        """
        if not hasattr(self._context_stack, 'stack'):
            self._context_stack.stack = []
        self._context_stack.stack.append(kwargs)

    def remove_context(self) -> None:
        """Remove the most recently added context from the stack."""
        if hasattr(self._context_stack, 'stack') and self._context_stack.stack:
            self._context_stack.stack.pop()

    def get_context(self) -> Dict[str, Any]:
        """
        Get the current context from the stack.

        Returns:
            Combined context from all stack entries
        """
        context = {}
        for ctx in getattr(self._context_stack, 'stack', []):
            context.update(ctx)
        return context

    def performance_log(self, logger: logging.Logger, level: int = logging.DEBUG) -> Callable:
        """
        Decorator to log function execution time.

        Args:
            logger: Logger to use for logging
            level: Logging level for performance log; slow calls log at WARNING

        Returns:
            Decorator function
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    execution_time = time.perf_counter() - start_time
                    logger.error(
                        f"Exception in {func.__module__}.{func.__name__}: {str(e)}",
                        extra={
                            "execution_time": execution_time,
                            "exception_type": type(e).__name__,
                        }
                    )
                    raise

                execution_time = time.perf_counter() - start_time
                log_level = logging.WARNING if execution_time > SLOW_EXECUTION_THRESHOLD else level
                logger.log(
                    log_level,
                    f"Performance: {func.__module__}.{func.__name__} executed in {execution_time:.4f}s",
                    extra={
                        "execution_time": execution_time,
                        "exceeds_threshold": execution_time > SLOW_EXECUTION_THRESHOLD,
                    }
                )
                return result
            return wrapper
        return decorator


# Logger name -> category, consulted by the category file filters
_LOGGER_CATEGORIES: Dict[str, str] = {}


def _category_for(logger_name: str) -> str:
    name = logger_name
    while name:
        if name in _LOGGER_CATEGORIES:
            return _LOGGER_CATEGORIES[name]
        name = name.rpartition('.')[0]
    return "system"


class _CategoryFilter(logging.Filter):
    """Passes only records whose logger belongs to one category."""

    def __init__(self, category: str):
        super().__init__()
        self.category = category

    def filter(self, record):
        return _category_for(record.name) == self.category


class _ContextFilter(logging.Filter):
    """Adds the LogContext stack and run id to every record."""

    def __init__(self, logger_config: LoggerConfig):
        super().__init__()
        self.logger_config = logger_config

    def filter(self, record):
        for key, value in self.logger_config.get_context().items():
            setattr(record, key, value)
        record.run_id = self.logger_config.run_id
        return True


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


# Create default logger configuration
default_logger_config = LoggerConfig()
atexit.register(default_logger_config.shutdown)


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """
    Convenience function to get a logger with the shared configuration.

    Args:
        name: Name of the logger
        category: Optional category for specialized logging

    Returns:
        Configured Logger instance
    """
    return default_logger_config.get_logger(name, category)


def configure_logging(log_dir: Optional[Union[str, Path]] = None,
                      level: Optional[Union[int, str]] = None,
                      **kwargs) -> LoggerConfig:
    """Apply runtime logging settings, e.g. from the ``logging`` config section."""
    default_logger_config.configure(log_dir=log_dir, level=level, **kwargs)
    return default_logger_config


def log_performance(level: int = logging.DEBUG) -> Callable:
    """
    Decorator to log function execution time.

    Args:
        level: Logging level for performance log

    Returns:
        Decorator function
    """
    def decorator(func):
        logger = get_logger(f"{ROOT_LOGGER_NAME}.performance")
        return default_logger_config.performance_log(logger, level)(func)
    return decorator


class LogContext:
    """Context manager for adding context to logs."""

    def __init__(self, **kwargs):
        self.context = kwargs

    def __enter__(self):
        default_logger_config.add_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        default_logger_config.remove_context()
