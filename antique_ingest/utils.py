# antique_ingest/utils.py
"""Shared utilities: logger construction and the retry decorator.

Loggers are configured once from settings and then handed to components
explicitly; nothing here keeps a module-level logger for others to import.
"""
import asyncio
import logging
import os
from functools import wraps
from logging.handlers import RotatingFileHandler

ROOT_LOGGER_NAME = "antique-ingest"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def configure_logging(settings=None):
    """Apply level and optional rotating file output from `LoggingSettings`."""
    level_name = settings.level if settings else os.getenv("LOG_LEVEL", "INFO")
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(format=LOG_FORMAT, level=level)
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    if settings and settings.to_file:
        os.makedirs(settings.directory, exist_ok=True)
        path = os.path.join(settings.directory, settings.filename)
        if not any(getattr(h, "baseFilename", None) == os.path.abspath(path) for h in root.handlers):
            handler = RotatingFileHandler(
                path, maxBytes=settings.max_bytes, backupCount=settings.backup_count, encoding="utf-8"
            )
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(handler)
    return root


def get_logger(name=None):
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def retry(exceptions, tries=3, delay=1, backoff=2, logger=None):
    """Retry a coroutine function, sleeping `delay * backoff**n` between attempts.

    The last attempt is not guarded, so its exception reaches the caller.
    """
    log = logger or get_logger("retry")

    def deco_retry(f):
        @wraps(f)
        async def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return await f(*args, **kwargs)
                except exceptions as e:
                    log.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    await asyncio.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return await f(*args, **kwargs)
        return f_retry
    return deco_retry
