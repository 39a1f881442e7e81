# immobot/utils.py
"""Shared utilities: logging, retry decorator, error types and small helpers."""
import errno
import os
import logging
import time
from functools import wraps
from logging.handlers import RotatingFileHandler
from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5


class ImmobotError(Exception):
    """Base class for errors raised by the bot."""


class ConfigError(ImmobotError):
    """Configuration is missing or invalid. Fatal at startup."""


class NavigationError(ImmobotError):
    """A page could not be reached after retrying."""


class LoginError(ImmobotError):
    """The account session could not be (re-)established."""


class SubmissionError(ImmobotError):
    """A step of the contact-form flow could not be completed."""

    def __init__(self, reason, state=None):
        super().__init__(reason)
        self.reason = reason
        self.state = state


def is_resource_exhaustion(exc):
    """Out of memory or disk: nothing a retry on the next tick can fix."""
    if isinstance(exc, MemoryError):
        return True
    return isinstance(exc, OSError) and exc.errno in (errno.ENOSPC, errno.ENOMEM)


def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("immobot")


def add_file_handlers(logs_dir, log=logger):
    """Attach rotating ``bot.log`` and ``error.log`` handlers once."""
    os.makedirs(logs_dir, exist_ok=True)
    existing = {getattr(h, "baseFilename", None) for h in log.handlers}
    formatter = logging.Formatter(LOG_FORMAT)
    for filename, level in (("bot.log", logging.DEBUG), ("error.log", logging.ERROR)):
        path = os.path.abspath(os.path.join(logs_dir, filename))
        if path in existing:
            continue
        handler = RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(formatter)
        log.addHandler(handler)


def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


def format_duration(seconds):
    """Render a duration as ``1h 5m``, ``4m 10s`` or ``12s``."""
    seconds = int(seconds)
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
