import logging
import sys

from loguru import logger

from app.core.config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# Chatty libraries only report warnings unless debugging
NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3", "httpx", "uvicorn.access")

_configured = False


class InterceptHandler(logging.Handler):
    """Routes standard `logging` records (uvicorn, sqlalchemy, requests) into loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller to get correct stack depth
        frame, depth = logging.currentframe(), 2
        while frame.f_back and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(log_file=None):
    """
    Configures loguru once per process.

    1. stderr sink for the console / container logs.
    2. Rotating file sink (`LOG_FILE`).
    3. Standard logging is intercepted; noisy libraries are raised to WARNING.
    """
    global _configured
    if _configured:
        return

    level = "DEBUG" if settings.debug else "INFO"

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, diagnose=settings.is_development)
    logger.add(
        str(log_file or settings.log_file),
        rotation="500 MB",
        compression="zip",
        level=level,
        backtrace=True,
        diagnose=settings.is_development,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else logging.WARNING)

    _configured = True
    logger.debug(f"Logging configured for environment '{settings.environment}'")
