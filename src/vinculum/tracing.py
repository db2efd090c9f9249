"""Observers of container activity.

The container reports what it registers, builds and tears down to a
:class:`Tracer`. Tracing never influences resolution. The default tracer
discards everything; :class:`LoggingTracer` forwards to the standard
``logging`` module.

Example:
    >>> logging.basicConfig(level=logging.DEBUG)
    >>> container = Container(tracer=LoggingTracer())
"""

import logging
from typing import Any, Optional, Protocol

__all__ = ["Tracer", "NopTracer", "LoggingTracer"]


class Tracer(Protocol):
    def trace(self, message: str, *args: Any) -> None:
        """Record an event; ``args`` are %-style arguments for ``message``."""


class NopTracer:
    def trace(self, message: str, *args: Any) -> None:
        pass


class LoggingTracer:
    """Sends trace events to a standard library logger.

    Args:
        logger: Logger to write to; defaults to the ``vinculum`` logger.
        level: Level of every trace record.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.DEBUG):
        self._logger = logger or logging.getLogger("vinculum")
        self._level = level

    def trace(self, message: str, *args: Any) -> None:
        self._logger.log(self._level, message, *args)
