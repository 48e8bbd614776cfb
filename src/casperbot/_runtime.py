"""Structural interface between the connection manager and a protocol runtime."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol

from casperbot.config import BotConfig
from casperbot.state.events import RuntimeEvent

EventCallback = Callable[[RuntimeEvent], None]


class ProtocolRuntime(Protocol):
    """One live session of the messaging library.

    Implementations own the library's network thread and must deliver
    every event to the callback on the asyncio loop thread. Having a
    protocol here keeps the connection manager testable with in-memory
    doubles while the production implementation stays concrete.
    """

    @property
    def is_running(self) -> bool:
        ...

    def start(self) -> None:
        """Open the session. Blocking; called from an executor."""
        ...

    def stop(self) -> None:
        """Close the session. Blocking; must be safe to call twice."""
        ...

    def send_text(self, chat: str, text: str) -> None:
        """Send a text message. Blocking; called from an executor."""
        ...


RuntimeFactory = Callable[[BotConfig, asyncio.AbstractEventLoop, EventCallback], ProtocolRuntime]


def default_runtime_factory(
    config: BotConfig,
    loop: asyncio.AbstractEventLoop,
    on_event: EventCallback,
) -> ProtocolRuntime:
    """Build the neonize-backed runtime.

    Imported lazily: loading the library pulls in its native client.
    """
    from casperbot._whatsapp import WhatsAppRuntime

    return WhatsAppRuntime(config=config, loop=loop, on_event=on_event)
