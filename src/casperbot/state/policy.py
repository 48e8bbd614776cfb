"""Reconnect policy.

This module contains no I/O; the connection manager asks it what to do
after a disconnect and how long to wait.
"""

from __future__ import annotations

from dataclasses import dataclass

from casperbot.state.events import DisconnectReason

_TERMINAL_REASONS: frozenset[DisconnectReason] = frozenset(
    {
        DisconnectReason.LOGGED_OUT,
        DisconnectReason.CONNECTION_REPLACED,
        DisconnectReason.BANNED,
    }
)


def should_reconnect(reason: DisconnectReason | None) -> bool:
    """Whether a close with *reason* is worth another attempt.

    Logout, takeover by another session and bans are final; anything else
    (including an unknown reason) is treated as a transient drop.
    """
    return reason not in _TERMINAL_REASONS


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a ceiling and a bounded number of attempts."""

    base_delay: float = 5.0
    factor: float = 2.0
    max_delay: float = 60.0
    max_retries: int = 10

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before reconnect *attempt* (1-based)."""
        attempt = max(1, attempt)
        try:
            delay = self.base_delay * self.factor ** (attempt - 1)
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def should_reconnect(self, reason: DisconnectReason | None) -> bool:
        return should_reconnect(reason)
