"""Logging helpers: message filtering, a terse format, and pausing output."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, TextIO

__all__ = ["LevelFormatter", "MessageFilter", "pause"]


class LevelFormatter(logging.Formatter):
    """Formats records as ``LEVEL: message``."""

    def format(self, record: logging.LogRecord) -> str:
        return f"{record.levelname.upper()}: {record.getMessage()}"


class MessageFilter(logging.Filter):
    """Drops records at the given levels whose message contains any of the filters."""

    def __init__(self, levels: Iterable[int], *filters: str) -> None:
        super().__init__()
        self.levels = frozenset(levels)
        self.filters = tuple(filters)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno not in self.levels:
            return True
        message = record.getMessage()
        return not any(text in message for text in self.filters)


class _BufferedStream:
    def __init__(self, target: TextIO) -> None:
        self._target = target
        self._lock = threading.Lock()
        self._buffer: list[str] | None = []

    def write(self, text: str) -> int:
        with self._lock:
            if self._buffer is None:
                return self._target.write(text)
            self._buffer.append(text)
            return len(text)

    def flush(self) -> None:
        with self._lock:
            if self._buffer is None:
                self._target.flush()

    def resume(self) -> None:
        with self._lock:
            if self._buffer is None:
                return
            self._target.write("".join(self._buffer))
            self._buffer = None
            self._target.flush()


def pause(logger: logging.Logger) -> Callable[[], None]:
    """Hold back the output of the logger's stream handlers.

    Returns a function that writes what was held back and restores the
    handlers' streams.
    """
    paused: list[tuple[logging.StreamHandler, _BufferedStream]] = []
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler):
            buffered = _BufferedStream(handler.stream)
            handler.setStream(buffered)
            paused.append((handler, buffered))

    def resume() -> None:
        for handler, buffered in paused:
            buffered.resume()
            if handler.stream is buffered:
                handler.setStream(buffered._target)

    return resume