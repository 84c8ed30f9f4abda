"""A map whose readers wait until the keys they ask for have been set."""

from __future__ import annotations

import threading
import time
from typing import Any


class WaitMap:
    """Key-value store where ``get`` blocks until every requested key is set."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._cond = threading.Condition()

    def set(self, key: str, value: Any) -> None:
        """Store a value and wake every reader waiting for it."""
        with self._cond:
            self._values[key] = value
            self._cond.notify_all()

    def get(self, *args: str, timeout: float | None = None) -> dict[str, Any]:
        """Return the values of the given keys, waiting until each is set.

        ``timeout`` bounds the total wait in seconds; ``TimeoutError`` is
        raised when it runs out.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        result: dict[str, Any] = {}
        with self._cond:
            for key in args:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                if not self._cond.wait_for(lambda key=key: key in self._values, timeout=remaining):
                    raise TimeoutError(f"timed out waiting for key {key!r}")
                result[key] = self._values[key]
        return result