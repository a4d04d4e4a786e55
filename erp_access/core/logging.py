"""Logging setup for the erp_access logger hierarchy."""

import logging
from typing import Optional

from erp_access.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("erp_access")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for processes embedding this package."""
    if level is None:
        level = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logger.setLevel(level.upper())
