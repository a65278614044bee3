import logging
from typing import Optional, Union

from registry_gateway.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[Union[str, int]] = None) -> None:
    """Configure root logging for applications embedding the gateway."""
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger(__name__).debug(f"Logging configured at level {logging.getLevelName(level)}")
