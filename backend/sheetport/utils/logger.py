"""
Logging setup shared by every module.

Usage:
    from sheetport.utils.logger import get_logger
    logger = get_logger(__name__)
"""
import logging
import sys

from sheetport.config import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

_configured = False


def setup_logging() -> None:
    """Configure the root logger once (DEBUG in debug mode, INFO otherwise)."""
    global _configured
    if _configured:
        return

    level = logging.DEBUG if get_settings().debug else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    # httpx logs every request at INFO, including token endpoint URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a module-level logger."""
    return logging.getLogger(name)


def redact(value: str, keep: int = 6) -> str:
    """Shorten a secret (token, code) for log output."""
    if not value:
        return "<empty>"
    return f"{value[:keep]}..."
