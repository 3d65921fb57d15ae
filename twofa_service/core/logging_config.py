"""
Logging setup for twofa_service
"""

import logging
import sys

from twofa_service.core.config import settings

JSON_FORMAT = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = None, log_format: str = None) -> None:
    """Install a stdout handler on the root logger using LOG_LEVEL / LOG_FORMAT"""
    level = level or settings.LOG_LEVEL
    log_format = log_format or settings.LOG_FORMAT

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=JSON_FORMAT if log_format == "json" else TEXT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
