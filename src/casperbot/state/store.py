"""In-memory bot state.

The connection manager is the only writer; the status server and the bot
read snapshots from it.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from casperbot.state.events import ConnectionState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RetryCounter:
    """Bounded count of consecutive failed connection attempts."""

    def __init__(self, maximum: int) -> None:
        if maximum < 1:
            raise ValueError(f"maximum must be >= 1, got {maximum}")
        self._maximum = maximum
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    @property
    def maximum(self) -> int:
        return self._maximum

    @property
    def exhausted(self) -> bool:
        return self._value >= self._maximum

    def increment(self) -> int:
        """Count one more failure and return the new value (never above the cap)."""
        self._value = min(self._value + 1, self._maximum)
        return self._value

    def reset(self) -> None:
        self._value = 0

    def __repr__(self) -> str:
        return f"RetryCounter({self._value}/{self._maximum})"


class LatestQR(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    code: str = Field(..., description="Raw pairing string")
    image: str = Field(..., description="Rendered QR as an SVG data URI")
    created_at: datetime = Field(default_factory=_utcnow)


class LinkedUser(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str | None = None
    name: str | None = None


class BotState:
    """Connection state, retry counter, latest QR and a few counters."""

    def __init__(
        self,
        *,
        max_retries: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self.connection = ConnectionState.DISCONNECTED
        self.retry = RetryCounter(max_retries)
        self.qr: LatestQR | None = None
        self.user: LinkedUser | None = None
        self.last_error: str | None = None
        self.changed_at: datetime = clock()
        self.creds_updated_at: datetime | None = None
        self.messages_received = 0
        self.replies_sent = 0

    def now(self) -> datetime:
        return self._clock()

    def set_connection(self, connection: ConnectionState) -> bool:
        """Move to *connection*; return whether the state actually changed."""
        if connection == self.connection:
            return False
        self.connection = connection
        self.changed_at = self._clock()
        if connection == ConnectionState.CONNECTED:
            self.last_error = None
        return True

    def set_qr(self, code: str, image: str) -> LatestQR:
        self.qr = LatestQR(code=code, image=image, created_at=self._clock())
        return self.qr

    def clear_qr(self) -> None:
        self.qr = None

    def record_error(self, message: str) -> None:
        self.last_error = message

    def record_creds_update(self, when: datetime | None = None) -> None:
        self.creds_updated_at = when or self._clock()

    @property
    def is_connected(self) -> bool:
        return self.connection == ConnectionState.CONNECTED

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view of the current state."""
        return {
            "connection": self.connection.value,
            "retry": self.retry.value,
            "max_retries": self.retry.maximum,
            "qr": self.qr.image if self.qr is not None else None,
            "user": self.user.model_dump() if self.user is not None else None,
            "last_error": self.last_error,
            "changed_at": self.changed_at.isoformat(),
            "creds_updated_at": self.creds_updated_at.isoformat() if self.creds_updated_at else None,
            "messages_received": self.messages_received,
            "replies_sent": self.replies_sent,
        }
