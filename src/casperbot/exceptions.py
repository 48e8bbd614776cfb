"""Custom exception hierarchy for casperbot."""

from __future__ import annotations


class CasperError(Exception):
    """Base exception for all casperbot errors."""


class CasperConfigError(CasperError):
    """Invalid or missing configuration."""


class CasperSessionError(CasperError):
    """Auth state directory could not be prepared or cleared."""


class CasperConnectionError(CasperError):
    """Connection attempt to WhatsApp failed."""

    def __init__(self, message: str, *, reason: str = "") -> None:
        self.reason = reason
        super().__init__(message)


class CasperNotConnectedError(CasperConnectionError):
    """An operation needed a live connection but none is open."""


class CasperSendError(CasperError):
    """The protocol library rejected an outgoing message."""

    def __init__(self, message: str, *, chat: str = "") -> None:
        self.chat = chat
        super().__init__(message)
