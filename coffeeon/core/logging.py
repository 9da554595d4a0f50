import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from coffeeon.core.config import settings

LOGGER_NAME = "coffeeon"


def setup_logging() -> logging.Logger:
    """
    Configure the application logger.

    - Console output always
    - Daily rotating file under LOG_DIR when it is set (7 days kept)
    - Safe to call more than once
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.LOG_LEVEL.upper())

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=log_dir / "coffeeon.log",
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.info("Logging initialized (env=%s)", settings.APP_ENV)
    return logger
