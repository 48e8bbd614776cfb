"""Normalized runtime events.

The protocol runtime converts library callbacks into these events and
hands them to the connection manager on the event loop thread.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

GROUP_SERVER = "g.us"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_SCAN = "awaiting_scan"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"
    ERROR = "error"


class ConnectionPhase(StrEnum):
    """The ``connection`` field of a connection update."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DisconnectReason(StrEnum):
    LOGGED_OUT = "logged_out"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_FAILED = "connection_failed"
    CONNECTION_REPLACED = "connection_replaced"
    RESTART_REQUIRED = "restart_required"
    BANNED = "banned"
    UNKNOWN = "unknown"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConnectionUpdate(BaseModel):
    """A change in the connection lifecycle, a new pairing QR, or both."""

    model_config = ConfigDict(frozen=True)

    connection: ConnectionPhase | None = None
    qr: str | None = Field(default=None, description="Raw pairing string to encode as a QR code")
    reason: DisconnectReason | None = Field(default=None, description="Why the connection closed")
    error_message: str | None = None
    user_id: str | None = None
    user_name: str | None = None
    observed_at: datetime = Field(default_factory=_utcnow)

    @field_validator("qr")
    @classmethod
    def _empty_qr_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class IncomingMessage(BaseModel):
    """A chat message received from WhatsApp."""

    model_config = ConfigDict(frozen=True)

    message_id: str = ""
    chat: str = Field(..., description="JID of the chat to reply to")
    sender_name: str = "Unknown"
    text: str = ""
    from_me: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_validator("chat")
    @classmethod
    def _normalize_chat(cls, value: str) -> str:
        chat = value.strip()
        if not chat:
            raise ValueError("chat must be non-empty")
        return chat

    @field_validator("sender_name", mode="before")
    @classmethod
    def _default_sender_name(cls, value: str | None) -> str:
        if not value or not str(value).strip():
            return "Unknown"
        return str(value).strip()

    @property
    def is_group(self) -> bool:
        return self.chat.endswith(f"@{GROUP_SERVER}")


class CredentialsUpdate(BaseModel):
    """The library persisted new credentials to the auth state."""

    model_config = ConfigDict(frozen=True)

    observed_at: datetime = Field(default_factory=_utcnow)


RuntimeEvent = ConnectionUpdate | IncomingMessage | CredentialsUpdate
