"""
Logging configuration and utilities.

All crawl areas (listing crawl, enrichment, frontier, sessions, proxies) log
through per-area business loggers with daily rotated files and a retention
window.
"""

import logging
import logging.handlers
import os
import sys
import threading
import time
from pathlib import Path
from typing import Optional
from datetime import datetime, timedelta

import schedule
import structlog


DEFAULT_RETENTION_DAYS = 7


def _logs_dir() -> Path:
    """Directory for log files, overridable through the environment."""
    return Path(os.getenv("DIRECTORY_CRAWLER_LOG_DIR", "logs"))


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    retention_days: int = DEFAULT_RETENTION_DAYS
) -> None:
    """
    Set up structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        retention_days: Number of days to retain log files
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_file,
            when='midnight',
            interval=1,
            backupCount=retention_days,
            encoding='utf-8'
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        ))
        root_logger.addHandler(file_handler)

        _start_log_cleanup_scheduler(log_path.parent, retention_days)


_cleanup_thread: Optional[threading.Thread] = None


def _start_log_cleanup_scheduler(logs_dir: Path, retention_days: int) -> None:
    """Run a daily cleanup of expired log files on a daemon thread."""
    global _cleanup_thread
    if _cleanup_thread is not None and _cleanup_thread.is_alive():
        return

    schedule.every().day.at("02:00").do(cleanup_old_logs, logs_dir, retention_days)

    def run_scheduler():
        while True:
            schedule.run_pending()
            time.sleep(60)

    _cleanup_thread = threading.Thread(target=run_scheduler, name="LogCleanup", daemon=True)
    _cleanup_thread.start()


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Standard library logger
    """
    return logging.getLogger(name)


def get_structured_logger(name: str):
    """Get a structlog logger bound to ``name`` for key/value events."""
    return structlog.get_logger(name)


def get_business_logger(business_name: str, log_level: str = "INFO") -> logging.Logger:
    """
    Get a per-area business logger writing to its own rotated file.

    Args:
        business_name: Area name (e.g. 'crawler', 'enrichment')
        log_level: Logging level

    Returns:
        Configured logger
    """
    business_logs = {
        "crawler": "crawler.log",
        "enrichment": "enrichment.log",
        "frontier": "frontier.log",
        "session_pool": "session_pool.log",
        "proxy_pool": "proxy_pool.log",
        "system": "system.log",
    }
    log_file = business_logs.get(business_name, f"{business_name}.log")

    logger = logging.getLogger(f"business.{business_name}")

    # Already configured
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, log_level.upper()))

    log_path = _logs_dir() / log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_path,
        when='midnight',
        interval=1,
        backupCount=DEFAULT_RETENTION_DAYS,
        encoding='utf-8'
    )
    file_handler.suffix = "%Y-%m-%d"
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    logger.addHandler(file_handler)

    # Console only for errors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.ERROR)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(console_handler)

    return logger


def cleanup_old_logs(logs_dir: Optional[Path] = None, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
    """
    Remove log files older than the retention window.

    Args:
        logs_dir: Log directory
        retention_days: Retention in days

    Returns:
        Number of removed files
    """
    logs_dir = logs_dir or _logs_dir()
    if not logs_dir.exists():
        return 0

    cleaned_count = 0
    cutoff_date = datetime.now() - timedelta(days=retention_days)

    for log_file in logs_dir.glob("*.log*"):
        if not log_file.is_file():
            continue
        file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
        if file_mtime < cutoff_date:
            log_file.unlink()
            cleaned_count += 1

    if cleaned_count:
        logging.getLogger(__name__).info(f"Removed {cleaned_count} expired log files")

    return cleaned_count


def log_business_operation(business_name: str, operation_name: Optional[str] = None):
    """
    Decorator logging start, duration and failure of an operation.

    Args:
        business_name: Business logger name
        operation_name: Operation name (defaults to the function name)
    """
    def decorator(func):
        def wrapper(*args, **kwargs):
            logger = get_business_logger(business_name)
            op_name = operation_name or func.__name__

            logger.info(f"Starting {op_name}")
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
                logger.info(f"Finished {op_name} in {time.time() - start_time:.2f}s")
                return result
            except Exception as e:
                logger.error(f"{op_name} failed after {time.time() - start_time:.2f}s: {e}")
                raise

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator
