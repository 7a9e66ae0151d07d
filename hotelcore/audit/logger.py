import sys
from loguru import logger


def configure_logging(level: str = "INFO", serialize: bool = True):
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), backtrace=True, diagnose=False, serialize=serialize)
    return logger
