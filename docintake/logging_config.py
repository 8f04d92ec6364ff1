import logging
import logging.config
import os
import yaml
import json
import threading
from datetime import datetime, timezone
from collections import deque
from typing import Optional
import contextvars

# Context variable for trace ID
trace_id_var = contextvars.ContextVar('trace_id', default=None)

# Fields promoted to top-level keys of every JSON record
_STRUCTURED_FIELDS = ("method", "path", "status", "latency_ms", "customer_id", "batch_id", "job_id")

_RESERVED = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'getMessage', 'exc_info', 'exc_text',
    'stack_info', 'component', *_STRUCTURED_FIELDS
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


def get_trace_id() -> Optional[str]:
    """Get the current trace ID from context"""
    return trace_id_var.get()


class JsonFormatter(logging.Formatter):
    """JSON formatter with structured fields"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": _now_iso(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "trace_id": get_trace_id(),
            "component": getattr(record, 'component', 'api')
        }
        for key in _STRUCTURED_FIELDS:
            log_entry[key] = getattr(record, key, None)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Anything else passed through extra={...}
        for key, value in record.__dict__.items():
            if key not in _RESERVED:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class MemoryLogHandler(logging.Handler):
    """In-memory log handler with ring buffer for live logs"""

    def __init__(self, max_size: int = 10000):
        super().__init__()
        self.max_size = max_size
        self.logs = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        try:
            msg = self.format(record)
            if isinstance(self.formatter, JsonFormatter):
                try:
                    log_entry = json.loads(msg)
                except json.JSONDecodeError:
                    log_entry = {"msg": msg, "timestamp": _now_iso()}
            else:
                log_entry = {
                    "msg": msg,
                    "timestamp": _now_iso(),
                    "level": record.levelname,
                    "logger": record.name
                }
            with self._lock:
                self.logs.append(log_entry)
        except Exception:
            self.handleError(record)

    def get_logs(self, limit: int = 1000) -> list:
        with self._lock:
            logs = list(self.logs)
        return logs[-limit:] if limit else logs


# Global memory handler instance
memory_handler = MemoryLogHandler()


def setup_logging():
    """Setup logging configuration from YAML file or environment"""

    log_format = os.getenv("LOG_FORMAT", "json")
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_sample_rate = float(os.getenv("LOG_SAMPLE_RATE", "1.0"))
    log_exclude_paths = os.getenv("LOG_EXCLUDE_PATHS", "/v1/health,/v1/metrics/prometheus").split(",")

    config = None
    config_path = os.getenv("LOGGING_CONFIG", "LOGGING.yaml")
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            print(f"Warning: Could not load {config_path}: {e}")

    if not config:
        config = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": JsonFormatter},
                "text": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S"
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": log_format,
                    "stream": "ext://sys.stdout"
                }
            },
            "loggers": {
                "uvicorn": {"level": log_level, "propagate": True},
                "uvicorn.error": {"level": log_level, "propagate": True},
                "uvicorn.access": {"level": log_level, "propagate": True}
            },
            "root": {
                "level": log_level,
                "handlers": ["console"]
            }
        }

    if log_format == "text":
        for handler in config.get("handlers", {}).values():
            if "formatter" in handler:
                handler["formatter"] = "text"

    for logger in config.get("loggers", {}).values():
        logger["level"] = log_level

    logging.config.dictConfig(config)

    if log_format == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    memory_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if not isinstance(h, MemoryLogHandler)]
    root.addHandler(memory_handler)

    # Store configuration for middleware
    logging._config = {
        "exclude_paths": log_exclude_paths,
        "sample_rate": log_sample_rate
    }

    return config


def get_memory_handler():
    """Get the singleton memory handler instance"""
    return memory_handler
