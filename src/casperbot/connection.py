"""Connection lifecycle for the WhatsApp session.

Owns:
- starting/stopping the protocol runtime
- translating runtime events into bot-state updates
- the supervised reconnect task and session clearing on logout
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import shutil
import sys
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TextIO

from casperbot._qr import print_pairing_qr, render_svg_data_uri
from casperbot._redact import mask_jid, redact_for_log
from casperbot._runtime import ProtocolRuntime, RuntimeFactory, default_runtime_factory
from casperbot.config import BotConfig
from casperbot.exceptions import CasperNotConnectedError, CasperSendError, CasperSessionError
from casperbot.state.events import (
    ConnectionPhase,
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    IncomingMessage,
    RuntimeEvent,
)
from casperbot.state.policy import RetryPolicy
from casperbot.state.store import BotState, LinkedUser

_logger = logging.getLogger(__name__)

MessageHandler = Callable[[IncomingMessage], Awaitable[None]]


class ConnectionManager:
    """Keeps one WhatsApp session alive and reports its state.

    Usage::

        manager = ConnectionManager(config, state, on_message=handle)
        await manager.start()
        ...
        await manager.stop()
    """

    def __init__(
        self,
        config: BotConfig,
        state: BotState,
        *,
        on_message: MessageHandler | None = None,
        runtime_factory: RuntimeFactory = default_runtime_factory,
        policy: RetryPolicy | None = None,
        qr_stream: TextIO | None = None,
    ) -> None:
        self._config = config
        self._state = state
        self._on_message = on_message
        self._runtime_factory = runtime_factory
        self._policy = policy or config.retry_policy()
        self._qr_stream = qr_stream
        self._loop: asyncio.AbstractEventLoop | None = None
        self._runtime: ProtocolRuntime | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._stopping = False
        # Bumped for every runtime; events from older runtimes are dropped.
        self._generation = 0

    @property
    def state(self) -> BotState:
        return self._state

    @property
    def runtime(self) -> ProtocolRuntime | None:
        return self._runtime

    @property
    def reconnect_pending(self) -> bool:
        task = self._reconnect_task
        return task is not None and not task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open the session. Failures are logged and retried, never raised."""
        self._loop = asyncio.get_running_loop()
        self._stopping = False
        await self._open()

    async def stop(self) -> None:
        """Cancel any pending reconnect and close the session."""
        self._stopping = True
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._stop_runtime()
        for pending in list(self._tasks):
            pending.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._state.set_connection(ConnectionState.DISCONNECTED)

    async def _open(self) -> None:
        loop = self._require_loop()
        self._state.set_connection(ConnectionState.CONNECTING)
        _logger.info("Starting WhatsApp connection (attempt %d)", self._state.retry.value + 1)
        self._generation += 1
        on_event = functools.partial(self._on_event, self._generation)
        try:
            self.ensure_session_dir()
            runtime = self._runtime_factory(self._config, loop, on_event)
            await self._start_runtime(runtime)
        except Exception as exc:
            _logger.error("Error connecting to WhatsApp: %s", exc, exc_info=True)
            self._state.record_error(str(exc) or type(exc).__name__)
            self._schedule_reconnect()
            return
        self._runtime = runtime
        if self._stopping:
            await self._stop_runtime()

    async def _start_runtime(self, runtime: ProtocolRuntime) -> None:
        loop = self._require_loop()
        started = loop.run_in_executor(None, runtime.start)
        try:
            await asyncio.shield(started)
        except asyncio.CancelledError:
            # The executor thread cannot be interrupted; let it finish, then shut it down.
            _logger.debug("Runtime start cancelled, stopping the new runtime")
            with contextlib.suppress(Exception):
                await started
            try:
                await loop.run_in_executor(None, runtime.stop)
            except Exception:
                _logger.debug("WhatsApp runtime stop failed", exc_info=True)
            raise

    async def _stop_runtime(self) -> None:
        runtime = self._runtime
        self._runtime = None
        # Whatever the stopped runtime still reports is stale.
        self._generation += 1
        if runtime is None:
            return
        try:
            await self._require_loop().run_in_executor(None, runtime.stop)
        except Exception:
            _logger.debug("WhatsApp runtime stop failed", exc_info=True)

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = self._require_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Session directory
    # ------------------------------------------------------------------

    def ensure_session_dir(self) -> None:
        try:
            self._config.session_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CasperSessionError(f"Cannot create session directory {self._config.session_dir}: {exc}") from exc

    def clear_session(self) -> None:
        """Delete the stored auth state, keeping the directory itself."""
        session_dir = self._config.session_dir
        if not session_dir.exists():
            return
        try:
            for entry in session_dir.iterdir():
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
        except OSError as exc:
            raise CasperSessionError(f"Cannot clear session directory {session_dir}: {exc}") from exc
        _logger.info("Cleared stored session in %s", session_dir)

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        if self._stopping:
            return
        if self.reconnect_pending:
            _logger.debug("Reconnect already pending")
            return
        retry = self._state.retry
        if retry.exhausted:
            _logger.error("Giving up after %d failed connection attempts", retry.value)
            self._state.set_connection(ConnectionState.ERROR)
            return
        attempt = retry.increment()
        delay = self._policy.delay_for(attempt)
        _logger.info("Reconnecting in %.1f seconds (retry %d/%d)", delay, attempt, retry.maximum)
        self._reconnect_task = self._spawn(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._stopping:
            return
        # Past the delay an "open" no longer cancels this attempt. The task is
        # still tracked in self._tasks, so stop() can.
        self._reconnect_task = None
        await self._stop_runtime()
        await self._open()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done():
            _logger.info("Connection restored, cancelling pending reconnect")
            task.cancel()

    async def _restart_pairing(self) -> None:
        await self._stop_runtime()
        if self._stopping:
            return
        try:
            self.clear_session()
        except CasperSessionError as exc:
            _logger.error("%s", exc)
            self._state.record_error(str(exc))
            self._state.set_connection(ConnectionState.ERROR)
            return
        self._state.retry.reset()
        self._state.user = None
        await self._open()

    # ------------------------------------------------------------------
    # Runtime events (loop thread)
    # ------------------------------------------------------------------

    def _on_event(self, generation: int, event: RuntimeEvent) -> None:
        if generation != self._generation:
            _logger.debug("Dropping %s from a previous runtime", type(event).__name__)
            return
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("%s %s", type(event).__name__, redact_for_log(event.model_dump(mode="json")))
        if isinstance(event, ConnectionUpdate):
            self._handle_connection_update(event)
        elif isinstance(event, IncomingMessage):
            self._handle_message(event)
        elif isinstance(event, CredentialsUpdate):
            _logger.debug("Session credentials updated")
            self._state.record_creds_update(event.observed_at)

    def _handle_connection_update(self, update: ConnectionUpdate) -> None:
        if self._stopping:
            return

        if update.qr is not None:
            self._handle_qr(update.qr)

        if update.connection == ConnectionPhase.CLOSE:
            self._handle_close(update)
        elif update.connection == ConnectionPhase.OPEN:
            self._handle_open(update)
        elif update.connection == ConnectionPhase.CONNECTING:
            if self._state.connection != ConnectionState.AWAITING_SCAN:
                self._state.set_connection(ConnectionState.CONNECTING)

    def _handle_qr(self, code: str) -> None:
        self._state.set_qr(code, render_svg_data_uri(code))
        self._state.set_connection(ConnectionState.AWAITING_SCAN)
        _logger.info("New pairing QR code available")
        if self._config.terminal_qr:
            print_pairing_qr(code, self._qr_stream or sys.stdout)

    def _handle_open(self, update: ConnectionUpdate) -> None:
        # The library reconnects on its own after a drop.
        self._cancel_reconnect()
        self._state.set_connection(ConnectionState.CONNECTED)
        self._state.retry.reset()
        self._state.clear_qr()
        if update.user_id or update.user_name:
            self._state.user = LinkedUser(id=update.user_id, name=update.user_name)
        user = self._state.user
        _logger.info("%s Bot is connected to WhatsApp!", self._config.bot_name)
        _logger.info("Bot name: %s", (user.name if user else None) or self._config.bot_name)
        _logger.info("Phone number: %s", mask_jid(user.id if user else None))

    def _handle_close(self, update: ConnectionUpdate) -> None:
        reason = update.reason
        message = update.error_message or "Unknown error"
        _logger.warning("Connection closed (%s): %s", reason or DisconnectReason.UNKNOWN, message)
        self._state.record_error(message)

        if reason == DisconnectReason.LOGGED_OUT:
            self._state.set_connection(ConnectionState.LOGGED_OUT)
            self._state.clear_qr()
            if self._config.clear_session_on_logout:
                _logger.info("Logged out. Clearing session and restarting pairing")
                self._spawn(self._restart_pairing())
            else:
                _logger.warning("Logged out. Delete %s and restart to pair again", self._config.session_dir)
                self._spawn(self._stop_runtime())
            return

        if not self._policy.should_reconnect(reason):
            _logger.error("Connection closed permanently (%s)", reason)
            self._state.set_connection(ConnectionState.ERROR)
            self._spawn(self._stop_runtime())
            return

        self._state.set_connection(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _handle_message(self, message: IncomingMessage) -> None:
        self._state.messages_received += 1
        if self._on_message is None:
            return
        self._spawn(self._deliver(message))

    async def _deliver(self, message: IncomingMessage) -> None:
        assert self._on_message is not None  # noqa: S101
        try:
            await self._on_message(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.exception("Message handler failed for message %s", message.message_id)

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    async def send_text(self, chat: str, text: str) -> None:
        """Send *text* to *chat* over the live session."""
        runtime = self._runtime
        if runtime is None or not runtime.is_running or not self._state.is_connected:
            raise CasperNotConnectedError("Not connected to WhatsApp")
        try:
            await self._require_loop().run_in_executor(None, runtime.send_text, chat, text)
        except (CasperNotConnectedError, CasperSendError):
            raise
        except Exception as exc:
            raise CasperSendError(f"Send to {mask_jid(chat)} failed: {exc}", chat=chat) from exc
