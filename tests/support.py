"""
tests/support.py -- Test doubles and constants shared across test modules.

Kept out of conftest.py so test modules can import them directly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pyotp

# Meets the complexity policy: 12 chars, upper, lower, digit, special.
STRONG_PASSWORD = "Abc12345!@#$"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingAlerts:
    """Stands in for AlertSystem; keeps every alert for assertions."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []

    def send_alert(self, alert_type: str, details: dict) -> str:
        self.sent.append((alert_type, details))
        return f"ALERT-{len(self.sent)}"


def wrong_code(secret: str) -> str:
    """Return a 6-digit code that is not valid for secret anywhere near now."""
    totp = pyotp.TOTP(secret)
    now = datetime.now(timezone.utc)
    nearby = {totp.at(now + timedelta(seconds=30 * k)) for k in range(-3, 4)}
    for digit in "0123456789":
        candidate = digit * 6
        if candidate not in nearby:
            return candidate
    raise AssertionError("unreachable: at most 7 codes can collide")
