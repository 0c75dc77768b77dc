"""Configure logging for haulsim.

Every run writes its trace through the shared :data:`logger` (named
``haulsim``): one DEBUG record per trace line and an INFO record when a run
starts and finishes. :class:`LogConfig` decides where those records go.

Logging levels
==============
* ``logging.DEBUG`` = 10, trace lines (``[T=4.00]     DT2 ...``)
* ``logging.INFO`` = 20, run started / finished with the utilizations
* ``logging.WARNING`` = 30
"""
from __future__ import annotations
import logging
from typing import Optional

import colorlog

LOGGER_NAME = "haulsim"

TRACE_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'bold_white',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'bold_red',
}

_current: Optional[LogConfig] = None


class LogConfig:
    """
    Console and file output of the ``haulsim`` logger.

    A new instance replaces the handlers of the previous one, so configuring
    twice never duplicates output. Handlers drop every record while
    :attr:`enabled` is ``False``; propagation to the root logger is left
    alone.

    Parameters
    ----------
    enabled : bool
        Whether the handlers emit anything.
    console_level : int
        Level of the colored console handler. ``logging.DEBUG`` shows the
        full trace of every run.
    file_level : int
        Level of the file handler.
    file_path : str or None
        Trace file, opened only when logging is enabled. ``None`` disables it.
    """

    def __init__(self, enabled=False, console_level=logging.INFO, file_level=logging.DEBUG,
                 file_path='haulsim.log'):
        global _current
        self.enabled = enabled
        self._logger = logging.getLogger(LOGGER_NAME)
        self._logger.setLevel(logging.DEBUG)
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        self._console_handler = self._add_handler(
            logging.StreamHandler(),
            console_level,
            colorlog.ColoredFormatter('%(log_color)s%(levelname)s:%(name)s:%(message)s', log_colors=TRACE_COLORS),
        )
        self._file_handler = None
        if enabled and file_path:
            # simulation time is already part of every trace line
            self._file_handler = self._add_handler(
                logging.FileHandler(file_path),
                file_level,
                logging.Formatter('%(asctime)s:%(levelname)s:%(message)s'),
            )
        _current = self

    def _add_handler(self, handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(lambda record: self.enabled)
        self._logger.addHandler(handler)
        return handler

    @property
    def logger(self) -> logging.Logger:
        """The ``haulsim`` logger."""
        return self._logger

    @property
    def console_level(self) -> int:
        return self._console_handler.level

    @console_level.setter
    def console_level(self, value) -> None:
        self._console_handler.setLevel(value)

    @property
    def file_level(self) -> Optional[int]:
        if self._file_handler is None:
            return None
        return self._file_handler.level

    @file_level.setter
    def file_level(self, value) -> None:
        if self._file_handler is not None:
            self._file_handler.setLevel(value)


def log_config() -> LogConfig:
    """Return the current :class:`LogConfig`, creating a disabled one if needed."""
    if _current is None:
        return LogConfig(enabled=False)
    return _current


logger = logging.getLogger(LOGGER_NAME)
