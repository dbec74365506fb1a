"""Tests for novagate.gateway.status."""

import time

import pytest

from novagate import __version__
from novagate.gateway.status import StatusReporter, seconds_to_hms


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [
        (0, "0s"),
        (59.9, "59s"),
        (61, "1m 1s"),
        (3600, "1h 0s"),
        (90061, "1d 1h 1m 1s"),
        (-5, "0s"),
    ],
)
def test_seconds_to_hms(seconds, expected):
    assert seconds_to_hms(seconds) == expected


class TestStatusReporter:
    def test_message_contents(self):
        reporter = StatusReporter("Nova", variant="legacy", started_at=time.monotonic() - 65)
        text = reporter.message()
        assert text.startswith("*Nova Status*")
        assert f"Version: {__version__}" in text
        assert "Uptime: 1m 5s" in text
        assert "Session: legacy" in text

    def test_extra_lines(self):
        text = StatusReporter().message(extra="Commands: 5")
        assert text.endswith("Commands: 5")
