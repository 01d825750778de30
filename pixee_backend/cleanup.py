"""
Периодическая очистка старых файлов (staging, processed, public uploads).
"""
import asyncio
import logging
import os
import time
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


def clean_dir(directory: str, retention_seconds: float, now: Optional[float] = None) -> int:
    """
    Delete regular files older than ``retention_seconds`` in ``directory``.

    Returns the number of deleted files. A missing directory is created.
    """
    now = time.time() if now is None else now
    if not os.path.isdir(directory):
        logger.info("Directory not found, creating: %s", directory)
        os.makedirs(directory, exist_ok=True)
        return 0

    deleted = 0
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        try:
            if os.path.isfile(path) and now - os.path.getmtime(path) > retention_seconds:
                os.remove(path)
                deleted += 1
                logger.info("Deleted old file: %s", path)
        except OSError as e:
            logger.error("Error handling file %s in %s: %s", name, directory, e)
    return deleted


def cleanup_old_files(directories: Iterable[str], retention_hours: float, now: Optional[float] = None) -> int:
    logger.info("🧹 Running cleanup. Retention: %s hour(s)", retention_hours)
    retention_seconds = retention_hours * 3600
    return sum(clean_dir(directory, retention_seconds, now) for directory in directories)


async def _cleanup_loop(directories, retention_hours: float, interval: float):
    while True:
        try:
            cleanup_old_files(directories, retention_hours)
        except Exception as e:
            logger.error(f"❌ Scheduled cleanup error: {e}")
        await asyncio.sleep(interval)


def schedule_cleanup(settings) -> Optional[asyncio.Task]:
    """
    Run one sweep now and then every ``CLEANUP_INTERVAL_SECONDS``.

    Must be called from a running event loop. Returns the background task,
    or None when cleanup is disabled.
    """
    if settings.DISABLE_CLEANUP:
        logger.info("File cleanup disabled via DISABLE_CLEANUP=true")
        return None

    directories = [settings.UPLOAD_DIR, settings.PROCESSED_DIR, settings.PUBLIC_UPLOADS_DIR]
    task = asyncio.create_task(
        _cleanup_loop(directories, settings.FILE_RETENTION_HOURS, settings.CLEANUP_INTERVAL_SECONDS)
    )
    logger.info(
        "✅ Scheduled file cleanup every %ss (retention: %sh)",
        settings.CLEANUP_INTERVAL_SECONDS, settings.FILE_RETENTION_HOURS,
    )
    return task
