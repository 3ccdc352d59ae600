"""
Logging configuration for the photo analyzer.

Every module logs through `get_logger("<area>")`, which namespaces it under
`photo_analyzer.<area>` so one level setting governs the whole pipeline.
"""
import logging
import sys
from typing import Iterable, Optional

from photo_analyzer.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Per-request chatter from the HTTP and SDK clients
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def setup_logging(level: str = "INFO", quiet: Iterable[str] = NOISY_LOGGERS) -> logging.Logger:
    """Configure stdout logging and return the package logger."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for name in quiet:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    package_logger = logging.getLogger("photo_analyzer")
    package_logger.setLevel(numeric_level)
    return package_logger


logger = setup_logging(settings.log_level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger for a pipeline area, e.g. get_logger("pipeline.runner")."""
    if name:
        return logging.getLogger(f"photo_analyzer.{name}")
    return logger
