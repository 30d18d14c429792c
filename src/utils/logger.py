import logging
from logging import handlers
from pathlib import Path
import socket
from typing import Optional, Dict, Any
import os
import gzip
from datetime import datetime, timezone
import sys

# Cache for loggers to avoid duplicate creation
_logger_cache: Dict[str, logging.Logger] = {}


def load_config():
    """Load config - uses centralized config module."""
    from .config import load_config as _load_config
    return _load_config()


def get_worker_name() -> str:
    """Get the name of this host, used to separate log directories per machine."""
    try:
        return socket.gethostname() or "unknown-worker"
    except OSError:
        return "unknown-worker"


def _get_log_dir() -> Path:
    from .paths import resolve_path
    config = load_config()
    return resolve_path(config['logging']['base_path'])


class RotatingFileHandlerWithCompression(handlers.RotatingFileHandler):
    """Rotating file handler that compresses old log files"""
    def emit(self, record):
        try:
            # Check if Python is shutting down
            if not sys or not sys.modules:
                return
            super().emit(record)
        except Exception:
            self.handleError(record)

    def doRollover(self):
        if self.stream:
            self.stream.close()
            self.stream = None
        if self.backupCount > 0:
            for i in range(self.backupCount - 1, 0, -1):
                sfn = self.rotation_filename("%s.%d.gz" % (self.baseFilename, i))
                dfn = self.rotation_filename("%s.%d.gz" % (self.baseFilename, i + 1))
                if os.path.exists(sfn):
                    if os.path.exists(dfn):
                        os.remove(dfn)
                    os.rename(sfn, dfn)
            dfn = self.rotation_filename(self.baseFilename + ".1.gz")
            if os.path.exists(dfn):
                os.remove(dfn)
            # Compress the current log file
            with open(self.baseFilename, 'rb') as f_in:
                with gzip.open(dfn, 'wb') as f_out:
                    f_out.writelines(f_in)
        self.mode = 'w'
        self.stream = self._open()


class TaskLogFormatter(logging.Formatter):
    """Formatter for task-level logs (pass summaries and other events shown on the console)"""
    def format(self, record):
        try:
            worker_name = get_worker_name()
            timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
            component = getattr(record, 'component', 'unknown')

            if hasattr(record, 'task_event') and hasattr(record, 'stats'):
                stats = record.stats or {}
                duration = getattr(record, 'duration', 0.0)
                counts = ", ".join(f"{k}={v}" for k, v in stats.items() if not isinstance(v, (list, dict)))
                return f"{timestamp} [{worker_name}] [{component}] Pass completed ({duration:.1f}s): {counts}"
            return f"{timestamp} [{worker_name}] [{component}] {record.getMessage()}"
        except Exception:
            return record.getMessage()


class WorkerLogFormatter(logging.Formatter):
    """Formatter for detailed worker-level logs (debug/info messages for troubleshooting)"""
    def format(self, record):
        try:
            worker_name = get_worker_name()
            timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime('%Y-%m-%d %H:%M:%S')

            # Get logger name without worker prefix
            logger_name = record.name.split('.')[-1] if '.' in record.name else record.name

            message = f"{timestamp} [{worker_name}.{logger_name}] [{record.levelname}] {record.getMessage()}"
            if record.exc_info:
                message = f"{message}\n{self.formatException(record.exc_info)}"
            return message
        except Exception:
            return record.getMessage()


def _fallback_logger(name: str) -> logging.Logger:
    fallback = logging.getLogger(f"fallback.{name}")
    fallback.setLevel(logging.INFO)
    if not fallback.handlers:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter('%(message)s'))
        fallback.addHandler(ch)
    return fallback


def setup_task_logger(task_type: str) -> logging.Logger:
    """Set up task-level logger for important events that should be centrally logged and shown

    Args:
        task_type: Type of task (e.g. 'ingestion', 'scheduler')
    """
    worker_name = get_worker_name()
    task_type = task_type.replace('worker.', '')
    logger_name = f"task.{worker_name}.{task_type}"

    if logger_name in _logger_cache:
        return _logger_cache[logger_name]

    try:
        worker_log_dir = _get_log_dir() / worker_name
        worker_log_dir.mkdir(parents=True, exist_ok=True)

        logger = logging.getLogger(logger_name)
        logger.setLevel(logging.INFO)
        logger.propagate = False

        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

        fh = RotatingFileHandlerWithCompression(
            str(worker_log_dir / f"{worker_name}_{task_type}.log"),
            maxBytes=50*1024*1024,
            backupCount=10
        )
        fh.setFormatter(TaskLogFormatter())
        logger.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setFormatter(TaskLogFormatter())
        logger.addHandler(ch)

        _logger_cache[logger_name] = logger
        return logger

    except Exception:
        # Fallback to basic console logging
        return _fallback_logger(f"task.{task_type}")


def setup_worker_logger(worker_type: str) -> logging.Logger:
    """Set up worker-level logger for detailed debug/info messages

    Args:
        worker_type: Component name (e.g. 'content_pipeline', 'scheduler')
    """
    if not worker_type.startswith('worker.'):
        worker_type = f"worker.{worker_type}"

    worker_name = get_worker_name()
    logger_name = f"{worker_name}.{worker_type}"

    if logger_name in _logger_cache:
        return _logger_cache[logger_name]

    try:
        worker_log_dir = _get_log_dir() / worker_name
        worker_log_dir.mkdir(parents=True, exist_ok=True)

        logger = logging.getLogger(logger_name)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

        log_file_name = f"{worker_name}_{worker_type.replace('worker.', '')}.log"
        fh = RotatingFileHandlerWithCompression(
            str(worker_log_dir / log_file_name),
            maxBytes=10*1024*1024,
            backupCount=5
        )
        fh.setFormatter(WorkerLogFormatter())
        logger.addHandler(fh)

        # Console only shows task events
        ch = logging.StreamHandler()
        ch.setFormatter(TaskLogFormatter())
        ch.addFilter(lambda record: hasattr(record, 'task_event'))
        logger.addHandler(ch)

        _logger_cache[logger_name] = logger
        return logger

    except Exception:
        return _fallback_logger(worker_type)


def log_pass_completion(component: str, stats: Dict[str, Any], duration: float,
                        task_name: Optional[str] = None):
    """Log the outcome of an ingestion or refresh pass to the central log and console

    Args:
        component: Component that ran the pass (e.g. 'content_pipeline')
        stats: Counters describing the pass
        duration: Duration of the pass in seconds
        task_name: Scheduled job that triggered the pass, if any
    """
    try:
        logger = setup_task_logger(component)
        extra = {
            'task_event': True,
            'component': component if not task_name else f"{component}:{task_name}",
            'stats': stats,
            'duration': duration,
        }
        logger.info("", extra=extra)
    except Exception as e:
        print(f"Error logging pass completion: {str(e)}")


setup_indexer_logger = lambda name: setup_worker_logger(f"indexer.{name}")

# Create main logger instance
logger = setup_worker_logger('main')
