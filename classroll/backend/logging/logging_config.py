import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from ..config.config import settings

# Chatty third-party loggers: APScheduler logs every job run, httpx every push request.
QUIET_LOGGERS = ("apscheduler", "httpx")


def setup_logging(level: Optional[Union[int, str]] = None, log_dir: Optional[Path] = None):
    """
    Configures the root logger for the API process and the lifecycle scheduler.

    Records go to stdout and to a rotating app.log under LOG_DIR (5MB per
    file, five old files kept). The level defaults to LOG_LEVEL.
    """
    level = level or settings.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    log_dir = Path(log_dir or settings.LOG_DIR)

    log_format = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

    logger = logging.getLogger()
    logger.setLevel(level)

    # Drop handlers installed by uvicorn so a single format is used.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(stdout_handler)

    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=5*1024*1024,
        backupCount=5
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, level))
