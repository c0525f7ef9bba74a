"""Observability utilities for the civic record index.

Provides persistent disk logging with rotation, operation timing metrics and
a tracing decorator used around scans, syncs, searches and index I/O.
"""
import functools
import json
import logging
import os
import tempfile
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

# Default log directory (can be overridden via configure_logging)
DEFAULT_LOG_DIR = Path.home() / ".civic-index" / "logs"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Root of the package logger hierarchy
ROOT_LOGGER_NAME = "civic_index"

F = TypeVar("F", bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Installs a rotating file handler (and optionally a console handler) on
    the ``civic_index`` logger hierarchy. Calling it again replaces the
    handlers installed by the previous call instead of stacking them.

    Args:
        log_dir: Directory for log files. Defaults to ~/.civic-index/logs/
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 10 MB)
        backup_count: Number of rotated files to keep (default: 5)
        console: Also log to the console (stderr)

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        if getattr(handler, "_civic_index_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "civic-index.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    file_handler._civic_index_handler = True
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler._civic_index_handler = True
        root_logger.addHandler(console_handler)

    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_path


@dataclass
class OperationMetrics:
    """Metrics for a single operation type."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float("inf")
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe metrics collection for engine operations.

    Collects timing, success/failure counts and the last error for each
    operation type (generate_indexes, sync, search, ...). Metrics stay in
    memory unless a ``metrics_file`` is given.
    """

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else None

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Record metrics for one completed operation."""
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.min_duration_ms = min(m.min_duration_ms, duration_ms)
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)

            if success:
                m.success_count += 1
            else:
                m.error_count += 1
                m.last_error = error
                m.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get a snapshot of all metrics keyed by operation name."""
        with self._lock:
            result = {}
            for op, m in self._metrics.items():
                avg_duration = m.total_duration_ms / m.count if m.count > 0 else 0
                min_dur = m.min_duration_ms if m.min_duration_ms != float("inf") else 0
                result[op] = {
                    "count": m.count,
                    "success_count": m.success_count,
                    "error_count": m.error_count,
                    "success_rate": m.success_count / m.count if m.count > 0 else 0,
                    "avg_duration_ms": round(avg_duration, 2),
                    "min_duration_ms": round(min_dur, 2),
                    "max_duration_ms": round(m.max_duration_ms, 2),
                    "last_error": m.last_error,
                    "last_error_time": m.last_error_time.isoformat() if m.last_error_time else None,
                }
            return result

    def get_summary(self) -> Dict[str, Any]:
        """Aggregate statistics across all operations."""
        with self._lock:
            total_ops = sum(m.count for m in self._metrics.values())
            total_success = sum(m.success_count for m in self._metrics.values())
            total_errors = sum(m.error_count for m in self._metrics.values())

            return {
                "uptime_seconds": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                "total_operations": total_ops,
                "total_success": total_success,
                "total_errors": total_errors,
                "overall_success_rate": total_success / total_ops if total_ops > 0 else 1.0,
                "operations_tracked": list(self._metrics.keys()),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)

    def save_metrics(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Write a JSON snapshot of the metrics atomically.

        Args:
            path: Destination; defaults to the collector's ``metrics_file``.

        Raises:
            ValueError: If neither ``path`` nor ``metrics_file`` is set.
            OSError: If the file cannot be written.
        """
        target = Path(path) if path else self._metrics_file
        if target is None:
            raise ValueError("No metrics file configured")

        data = {
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "summary": self.get_summary(),
            "operations": self.get_metrics(),
        }

        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_name, target)
        except BaseException:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise
        logger.debug(f"Saved metrics to {target}")
        return target


# Global metrics collector instance
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Context manager for timing and logging operations.

    Yields a dict the caller may fill with result info (e.g. result_count);
    it is included in the completion log line.

    Example:
        with timed_operation('search', query='noise') as op:
            results = do_search()
            op['result_count'] = len(results)
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {"correlation_id": correlation_id}

    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    success = True

    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_operation(operation, duration_ms, success, error_msg)

        result_str = ", ".join(f"{k}={v}" for k, v in result_info.items() if k != "correlation_id")
        status = "OK" if success else f"ERROR: {error_msg}"
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator for automatic operation tracing.

    Times the function, records metrics and logs start/end with a
    correlation ID.

    Example:
        @traced('sync')
        def sync(self, records, conflict_resolution): ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if "conflict_resolution" in kwargs:
                context["conflict_resolution"] = kwargs["conflict_resolution"]
            if kwargs.get("query"):
                context["query"] = str(kwargs["query"])[:50]

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if hasattr(result, "__len__"):
                    op["result_count"] = len(result)
                elif result is not None:
                    op["has_result"] = True
                return result

        return wrapper  # type: ignore
    return decorator
