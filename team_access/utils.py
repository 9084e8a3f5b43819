"""
Shared helpers: logger factory and time utilities.
"""
import logging
import sys
from datetime import datetime, timezone

from team_access.core import config


_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Return a module logger writing to stderr.

    The handler is attached once to the package root logger so every
    ``team_access.*`` logger shares it.
    """
    root = logging.getLogger("team_access")
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(config.LOG_LEVEL)
    if name == "__main__" or not name.startswith("team_access"):
        name = f"team_access.{name}"
    return logging.getLogger(name)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
