"""Status message shown on connect and by the ``alive`` command."""

from __future__ import annotations

import platform
import sys
import time

from novagate import __version__


def seconds_to_hms(seconds: float) -> str:
    """Format a duration as ``1d 2h 3m 4s`` (zero units omitted, seconds always shown)."""
    total = max(0, int(seconds))
    days, rem = divmod(total, 86_400)
    hours, rem = divmod(rem, 3_600)
    minutes, secs = divmod(rem, 60)
    parts = [f"{v}{unit}" for v, unit in ((days, "d"), (hours, "h"), (minutes, "m")) if v]
    parts.append(f"{secs}s")
    return " ".join(parts)


class StatusReporter:
    """Build the status text from process facts captured at startup."""

    def __init__(self, bot_name: str = "Nova", *, variant: str = "primary", started_at: float | None = None):
        self.bot_name = bot_name
        self.variant = variant
        self.started_at = time.monotonic() if started_at is None else started_at

    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def message(self, *, extra: str | None = None) -> str:
        lines = [
            f"*{self.bot_name} Status*",
            "",
            f"Version: {__version__}",
            f"Platform: {sys.platform} ({platform.machine() or 'unknown'})",
            f"Python: {platform.python_version()}",
            f"Uptime: {seconds_to_hms(self.uptime())}",
            f"Session: {self.variant}",
        ]
        if extra:
            lines.extend(["", extra])
        return "\n".join(lines)
