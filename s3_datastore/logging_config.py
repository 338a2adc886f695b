"""
Logging setup.

The library itself only creates module-level loggers; applications
embedding the data store call setup_logging() once at startup.
"""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging.

    Args:
        level: Level name; defaults to LOG_LEVEL from settings
    """
    if level is None:
        from .config.settings import get_settings
        level = get_settings().log_level

    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    # botocore logs every request at DEBUG; keep it out of our debug output
    logging.getLogger("botocore").setLevel(max(logging.getLogger().level, logging.INFO))
