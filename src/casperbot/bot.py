"""High-level bot wiring connection, commands and status server."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any

from casperbot._redact import mask_jid
from casperbot._runtime import RuntimeFactory, default_runtime_factory
from casperbot.commands import CommandDispatcher
from casperbot.config import BotConfig
from casperbot.connection import ConnectionManager
from casperbot.exceptions import CasperError
from casperbot.server import StatusServer
from casperbot.state.events import IncomingMessage
from casperbot.state.store import BotState

_logger = logging.getLogger(__name__)


class CasperBot:
    """Command-responding WhatsApp bot with a status page.

    Usage::

        async with CasperBot(BotConfig.from_env()) as bot:
            await bot.run_forever()
    """

    def __init__(
        self,
        config: BotConfig,
        *,
        runtime_factory: RuntimeFactory = default_runtime_factory,
        dispatcher: CommandDispatcher | None = None,
        serve_status: bool = True,
    ) -> None:
        self._config = config
        self.state = BotState(max_retries=config.max_retries)
        self.dispatcher = dispatcher or CommandDispatcher(config)
        self.connection = ConnectionManager(
            config,
            self.state,
            on_message=self.handle_message,
            runtime_factory=runtime_factory,
        )
        self.server: StatusServer | None = (
            StatusServer(self.state, config, self.dispatcher.commands) if serve_status else None
        )
        self._stop_event: asyncio.Event | None = None

    @property
    def config(self) -> BotConfig:
        return self._config

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> CasperBot:
        self._stop_event = asyncio.Event()
        if self.server is not None:
            await self.server.start()
        await self.connection.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.connection.stop()
        if self.server is not None:
            await self.server.stop()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def handle_message(self, message: IncomingMessage) -> None:
        """Answer *message* with every matching command reply."""
        if message.from_me:
            return
        _logger.info(
            "Message from %s%s: %s",
            message.sender_name,
            " (group)" if message.is_group else "",
            message.text,
        )
        for reply in self.dispatcher.handle(message):
            try:
                await self.connection.send_text(message.chat, reply)
            except CasperError as exc:
                _logger.warning("Reply to %s failed: %s", mask_jid(message.chat), exc)
                continue
            self.state.replies_sent += 1

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self) -> None:
        """Block until SIGINT/SIGTERM or :meth:`request_stop`."""
        if self._stop_event is None:
            raise CasperError("Bot not started. Use 'async with CasperBot(...) as bot:'")
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops.
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_stop)
                installed.append(sig)
        try:
            await self._stop_event.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
        _logger.info("Shutting down %s Bot...", self._config.bot_name)
