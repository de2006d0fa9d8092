"""
Core logging module.

Loguru owns every sink. Library modules keep using ``logging.getLogger``
and their records are forwarded through ``InterceptHandler``.
"""

import logging
import os
import sys

from loguru import logger

from shortlinks.core.config import Settings, settings


class InterceptHandler(logging.Handler):
    """
    Intercept standard logging and redirect to loguru.

    Library modules log through ``logging.getLogger(__name__)``; this handler
    forwards those records to loguru so everything ends up in the same sinks.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk past the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _file_sink_options(config: Settings) -> dict:
    options = {
        "level": config.LOG_LEVEL.upper(),
        "rotation": config.LOG_ROTATION,
        "retention": config.LOG_RETENTION,
        "compression": "gz",
        # Concurrent writers share one queue
        "enqueue": True,
    }
    if config.LOG_JSON:
        options["serialize"] = True
    else:
        options["format"] = config.LOG_FORMAT
    return options


def setup_logging(config: Settings = settings):
    """
    Configure Loguru sinks and route standard library logging into them.

    A stderr sink is used in debug mode or when file logging is off; the
    rotating file sink under ``LOG_DIR`` is JSON unless ``LOG_JSON`` is false.

    Returns:
        The configured loguru logger
    """
    logger.remove()

    if config.DEBUG or not config.LOG_TO_FILE:
        logger.add(
            sys.stderr,
            level=config.LOG_LEVEL.upper(),
            format=config.LOG_FORMAT,
            backtrace=config.DEBUG,
            diagnose=config.DEBUG,
        )

    if config.LOG_TO_FILE:
        os.makedirs(config.LOG_DIR, exist_ok=True)
        logger.add(
            os.path.join(config.LOG_DIR, config.LOG_FILENAME),
            **_file_sink_options(config),
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Drop handlers libraries attached themselves so records reach the root once
    for name in list(logging.root.manager.loggerDict.keys()):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if config.DB_ECHO else logging.WARNING
    )

    return logger.bind(app=config.APP_NAME)
