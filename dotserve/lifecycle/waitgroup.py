"""Completion counter for background tasks."""

import threading
from typing import Optional


class WaitGroup:
    """Count outstanding tasks and let callers block until all are done."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._count = 0

    @property
    def count(self) -> int:
        with self._condition:
            return self._count

    def add(self, delta: int = 1) -> None:
        with self._condition:
            if self._count + delta < 0:
                raise ValueError("WaitGroup counter cannot go negative")
            self._count += delta
            if self._count == 0:
                self._condition.notify_all()

    def done(self) -> None:
        self.add(-1)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the counter reaches zero; False if the timeout expired first."""
        with self._condition:
            return self._condition.wait_for(lambda: self._count == 0, timeout)
