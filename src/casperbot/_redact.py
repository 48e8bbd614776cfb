"""Helpers for privacy-safe logging.

Chat addresses carry phone numbers and the auth state carries keys. This
module masks both before they reach log output.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset({"qr", "code", "image", "noisekey", "identitykey", "pairingcode"})

_ADDRESS_KEYS: frozenset[str] = frozenset({"chat", "jid", "id", "sender", "user_id"})


def mask_jid(jid: str | None, *, keep: int = 4) -> str:
    """Mask the user part of a JID, keeping only the last *keep* characters.

    ``"31612345678@s.whatsapp.net"`` becomes ``"*******5678@s.whatsapp.net"``.
    """
    if not jid:
        return "<unknown>"
    user, sep, server = jid.partition("@")
    # Device suffix, e.g. "3161234:12"
    user, colon, device = user.partition(":")
    if len(user) <= keep:
        masked = "*" * len(user)
    else:
        masked = "*" * (len(user) - keep) + user[-keep:]
    if colon:
        masked = f"{masked}:{device}"
    return f"{masked}{sep}{server}"


def redact_for_log(value: Any, *, max_string: int = 512) -> Any:
    """Redacted copy of a JSON-ready event dump.

    Pairing material and keys become ``"<redacted>"``, chat addresses are
    masked with :func:`mask_jid` and long strings are truncated.
    """
    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for key, item in value.items():
            lowered = str(key).lower()
            if lowered in _SECRET_KEYS:
                redacted[key] = "<redacted>"
            elif lowered in _ADDRESS_KEYS and isinstance(item, str):
                redacted[key] = mask_jid(item)
            else:
                redacted[key] = redact_for_log(item, max_string=max_string)
        return redacted
    if isinstance(value, list):
        return [redact_for_log(item, max_string=max_string) for item in value]
    if isinstance(value, str) and len(value) > max_string:
        return f"{value[:max_string]}…<truncated>"
    return value
