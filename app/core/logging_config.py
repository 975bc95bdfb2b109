"""
Logging setup. One stdout handler on the root logger; modules log through
logging.getLogger(__name__).
"""

import logging
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure the root logger once at startup."""
    level_name = (level or settings.log_level or "INFO").upper()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers = [handler]

    # SQL echo stays off unless explicitly asked for
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return root_logger


def mask_code(code: str, visible: int = 8) -> str:
    """Shorten a one-time code for log lines (prefix + first chars of the id)."""
    if not code:
        return ""
    head, sep, tail = code.partition("-")
    if not sep:
        return code[:visible] + "..."
    return f"{head}-{tail[:visible]}..."
