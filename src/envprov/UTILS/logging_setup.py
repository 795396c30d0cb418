"""
Logging configuration for the envprov command line.
"""
import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class _StderrHandler(logging.StreamHandler):
    """
    Writes to whatever sys.stderr is when a record is emitted, so a
    redirected stderr is always honoured.
    """
    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Attaches one stderr handler to the `envprov` logger. Safe to call repeatedly.

    :param level: Level name.
    :return: The package logger.
    """
    logger = logging.getLogger("envprov")
    logger.setLevel(level)
    if not any(isinstance(h, _StderrHandler) for h in logger.handlers):
        handler = _StderrHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
