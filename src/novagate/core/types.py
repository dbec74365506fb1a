"""Shared type aliases used across novagate."""

from collections.abc import Awaitable, Callable
from typing import Any

# Remote party identifier (user or group)
Identity = str

# Monotonic clock, injectable for tests
Clock = Callable[[], float]

# Async send capability handed to components instead of the session itself
SendFn = Callable[[Identity, Any], Awaitable[Any]]
