"""Restart budget for reconnect-storm protection.

Counts restarts inside a rolling window.  The window opens at the first
restart and closes ``window`` seconds later; the next restart after that
starts a fresh window with a count of one.  Once the count goes past the
ceiling the budget is exhausted and the caller is expected to give up.
"""

import time
from dataclasses import dataclass

from novagate.core.types import Clock


@dataclass
class RestartBudgetConfig:
    """Configuration for restart budget behavior."""

    ceiling: int = 5
    """Restarts tolerated inside one window."""

    window: float = 30.0
    """Seconds a window stays open after its first restart."""


class RestartBudget:
    """Track restarts in a rolling window.

    Usage::

        budget = RestartBudget(RestartBudgetConfig(ceiling=5, window=30))
        if budget.record():
            reconnect()
        else:
            # Ceiling exceeded inside the window
            ...
    """

    def __init__(self, config: RestartBudgetConfig | None = None, clock: Clock = time.monotonic):
        self.config = config or RestartBudgetConfig()
        self._clock = clock
        self.count = 0
        self.window_start: float | None = None

    def record(self) -> bool:
        """Count one restart. Returns False once the ceiling is exceeded."""
        now = self._clock()
        if self.window_start is None or now - self.window_start > self.config.window:
            self.count = 0
            self.window_start = now
        self.count += 1
        return self.count <= self.config.ceiling

    @property
    def exhausted(self) -> bool:
        return self.count > self.config.ceiling

    def reset(self) -> None:
        """Forget all recorded restarts."""
        self.count = 0
        self.window_start = None

    def get_status(self) -> dict:
        """Return debug info about the current window."""
        elapsed = None if self.window_start is None else self._clock() - self.window_start
        return {
            "count": self.count,
            "ceiling": self.config.ceiling,
            "window": self.config.window,
            "window_elapsed": elapsed,
            "exhausted": self.exhausted,
        }
