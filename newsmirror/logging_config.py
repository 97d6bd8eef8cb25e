"""Logging configuration for newsmirror.

Every run writes a dated debug log (``newsmirror-YYYY-MM-DD.log``) and
appends the per-channel ``[SYNC]`` outcomes to ``sync.log``, which is
kept across days as the sync history.
"""
import logging
from datetime import datetime, timedelta
from pathlib import Path

LOG_PREFIX = "newsmirror"
SYNC_LOG_NAME = "sync.log"
SYNC_LOGGER = "newsmirror.sync"

FILE_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s'
SYNC_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'

logger = logging.getLogger(__name__)


def daily_log_path(log_dir: Path, day: datetime | None = None) -> Path:
    """Path of the debug log for ``day`` (today by default)."""
    day = day or datetime.now()
    return log_dir / f"{LOG_PREFIX}-{day.strftime('%Y-%m-%d')}.log"


def _reset_handlers(target: logging.Logger) -> None:
    for handler in list(target.handlers):
        target.removeHandler(handler)
        handler.close()


def setup_logging(log_dir: Path, retention_days: int = 30, verbose: bool = False):
    """Configure the daily file, sync history and console handlers.

    Args:
        log_dir: Directory for log files (created if missing)
        retention_days: How many days of daily logs to keep
        verbose: If True, set console to DEBUG level
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    cleanup_old_logs(log_dir, retention_days)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers when called twice
    _reset_handlers(root_logger)
    sync_logger = logging.getLogger(SYNC_LOGGER)
    _reset_handlers(sync_logger)

    # Daily file, DEBUG level; old days are removed by cleanup_old_logs
    file_handler = logging.FileHandler(daily_log_path(log_dir), encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    root_logger.addHandler(file_handler)

    # Sync history, INFO level; item-level debug lines stay in the daily file
    sync_handler = logging.FileHandler(log_dir / SYNC_LOG_NAME, encoding='utf-8')
    sync_handler.setLevel(logging.INFO)
    sync_handler.setFormatter(logging.Formatter(SYNC_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    sync_logger.addHandler(sync_handler)

    # Console handler - INFO level (or DEBUG if verbose)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter('[%(asctime)s] %(message)s', datefmt='%H:%M:%S'))
    root_logger.addHandler(console_handler)

    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO)

    return root_logger


def cleanup_old_logs(log_dir: Path, retention_days: int) -> int:
    """Delete daily logs older than retention_days; returns how many went.

    Only ``newsmirror-YYYY-MM-DD.log`` files are considered, so the sync
    history and unrelated files are never touched.
    """
    if not log_dir.exists():
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted = 0

    for log_file in log_dir.glob(f'{LOG_PREFIX}-*.log'):
        try:
            file_date = datetime.strptime(log_file.stem[len(LOG_PREFIX) + 1:], '%Y-%m-%d')
        except ValueError:
            continue
        if file_date < cutoff_date:
            try:
                log_file.unlink()
            except OSError as e:
                logger.warning(f"Could not delete old log file {log_file.name}: {e}")
                continue
            deleted += 1
            logger.debug(f"Deleted old log file: {log_file.name}")

    return deleted
