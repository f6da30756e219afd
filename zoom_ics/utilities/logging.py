"""Loggers of ``zoom_ics``.

Two module-level loggers are configured from the ``logging`` section of
:py:data:`~zoom_ics.utilities.config.zicparams`:

- :py:data:`mylog`: progress and diagnostics of a run.
- :py:data:`devlog`: low-level traces of the numerical kernels, disabled by default.

Classes that want a logger of their own declare ``logger = ZoomLogDescriptor()``; the logger is
named ``zoom_ics.<ClassName>`` and shares the format, level and stream of :py:data:`mylog`.
"""
import logging
import sys
from abc import ABC, abstractmethod

from zoom_ics.utilities.config import zicparams


def _build_logger(key: str, name: str) -> logging.Logger:
    settings = zicparams["logging", key]

    handler = logging.StreamHandler(getattr(sys, settings["stream"]))
    handler.setFormatter(logging.Formatter(settings["format"]))

    logger = logging.Logger(name)
    logger.addHandler(handler)
    logger.setLevel(settings["level"])
    logger.propagate = False
    logger.disabled = not settings["enabled"]
    return logger


mylog: logging.Logger = _build_logger("mylog", "zoom_ics")
""":py:class:`logging.Logger`: The main logger for ``zoom_ics``."""
devlog: logging.Logger = _build_logger("devlog", "zoom_ics-development")
""":py:class:`logging.Logger`: The development logger for ``zoom_ics``."""


class LogDescriptor(ABC):
    """Class attribute resolving to a per-class logger, created on first access."""

    LOG_CLASS = logging.Logger

    def __get__(self, instance, owner) -> logging.Logger:
        if owner.__dict__.get("_logger") is None:
            original_logger_class = logging.getLoggerClass()
            logging.setLoggerClass(self.LOG_CLASS)

            try:
                owner._logger = logging.getLogger(f"zoom_ics.{owner.__name__}")
                self.configure_logger(owner._logger)
            finally:
                logging.setLoggerClass(original_logger_class)

        return owner._logger

    @abstractmethod
    def configure_logger(self, logger: logging.Logger):
        pass


class ZoomLogDescriptor(LogDescriptor):
    """Logger descriptor sharing the ``mylog`` format, level and stream."""

    def configure_logger(self, logger: logging.Logger):
        if not logger.handlers:
            logger.addHandler(mylog.handlers[0])
        logger.setLevel(mylog.level)
        logger.propagate = False
        logger.disabled = mylog.disabled
