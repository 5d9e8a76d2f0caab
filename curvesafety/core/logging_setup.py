import logging
import sys
from typing import Optional

from .config import settings


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for command-line runs."""
    level = (level or settings.LOG_LEVEL).upper()
    root_logger = logging.getLogger()
    # Skip if something (e.g. pytest) already installed handlers
    if root_logger.handlers:
        root_logger.setLevel(level)
        return

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout,
    )
