"""neonize-backed WhatsApp runtime.

The library runs its own network thread. Every callback is translated into
a :mod:`casperbot.state.events` model and handed to the asyncio loop with
``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from neonize.client import NewClient
from neonize.events import (
    ConnectedEv,
    ConnectFailureEv,
    DisconnectedEv,
    LoggedOutEv,
    MessageEv,
    PairStatusEv,
    StreamReplacedEv,
    TemporaryBanEv,
)
from neonize.utils import build_jid

from casperbot._redact import mask_jid
from casperbot._runtime import EventCallback
from casperbot.config import BotConfig
from casperbot.exceptions import CasperNotConnectedError, CasperSendError
from casperbot.state.events import (
    ConnectionPhase,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    IncomingMessage,
    RuntimeEvent,
)


def _jid_to_str(jid: Any) -> str:
    user = str(jid.User)
    server = str(jid.Server)
    return f"{user}@{server}" if server else user


def message_text(message: Any) -> str:
    """Plain text of a message: a conversation or an extended text message."""
    body = message.Message
    return str(body.conversation or body.extendedTextMessage.text or "")


class WhatsAppRuntime:
    """Threaded neonize client that emits normalized events onto an asyncio loop."""

    def __init__(
        self,
        *,
        config: BotConfig,
        loop: asyncio.AbstractEventLoop,
        on_event: EventCallback,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._on_event = on_event
        self._logger = logger or logging.getLogger(__name__)
        self._client: NewClient | None = None
        self._thread: threading.Thread | None = None
        self._running = False
        self._paired_user: tuple[str, str | None] | None = None
        # Library JID objects for chats we have seen, keyed by "user@server".
        self._chats: dict[str, Any] = {}

    @property
    def is_running(self) -> bool:
        """Whether the client network thread is active."""
        return self._running

    def _emit(self, event: RuntimeEvent) -> None:
        self._loop.call_soon_threadsafe(self._on_event, event)

    def start(self) -> None:
        """Create the client, register callbacks and connect in a background thread."""
        self.stop()
        db_path = self._config.session_db_path
        self._logger.debug("WhatsApp runtime start requested session=%s", db_path)

        client = NewClient(str(db_path))

        def on_qr(_c: NewClient, data_qr: bytes) -> None:
            code = data_qr.decode("utf-8", errors="replace") if isinstance(data_qr, bytes) else str(data_qr)
            self._emit(ConnectionUpdate(qr=code))

        def on_pair_status(_c: NewClient, event: PairStatusEv) -> None:
            self._paired_user = (_jid_to_str(event.ID), None)
            # Pairing writes fresh keys to the session store.
            self._emit(CredentialsUpdate())

        def on_connected(_c: NewClient, _event: ConnectedEv) -> None:
            user_id, user_name = self._paired_user or (None, None)
            self._emit(
                ConnectionUpdate(
                    connection=ConnectionPhase.OPEN,
                    user_id=user_id,
                    user_name=user_name,
                )
            )

        def closer(reason: DisconnectReason) -> Any:
            def on_close(_c: NewClient, event: Any) -> None:
                self._logger.debug("WhatsApp session closed event=%s", type(event).__name__)
                self._emit(
                    ConnectionUpdate(
                        connection=ConnectionPhase.CLOSE,
                        reason=reason,
                        error_message=type(event).__name__,
                    )
                )

            return on_close

        def on_message(_c: NewClient, message: MessageEv) -> None:
            try:
                source = message.Info.MessageSource
                chat = _jid_to_str(source.Chat)
                self._chats[chat] = source.Chat
                self._emit(
                    IncomingMessage(
                        message_id=str(message.Info.ID),
                        chat=chat,
                        sender_name=str(message.Info.Pushname),
                        text=message_text(message),
                        from_me=bool(source.IsFromMe),
                    )
                )
            except Exception:
                self._logger.debug("WhatsApp message parse failure", exc_info=True)

        client.event.qr(on_qr)
        client.event(PairStatusEv)(on_pair_status)
        client.event(ConnectedEv)(on_connected)
        client.event(LoggedOutEv)(closer(DisconnectReason.LOGGED_OUT))
        client.event(StreamReplacedEv)(closer(DisconnectReason.CONNECTION_REPLACED))
        client.event(TemporaryBanEv)(closer(DisconnectReason.BANNED))
        client.event(ConnectFailureEv)(closer(DisconnectReason.CONNECTION_FAILED))
        client.event(DisconnectedEv)(closer(DisconnectReason.CONNECTION_LOST))
        client.event(MessageEv)(on_message)

        thread = threading.Thread(target=self._run, args=(client,), name="casperbot-whatsapp", daemon=True)
        self._client = client
        self._thread = thread
        self._running = True
        self._emit(ConnectionUpdate(connection=ConnectionPhase.CONNECTING))
        thread.start()
        self._logger.debug("WhatsApp network thread started")

    def _run(self, client: NewClient) -> None:
        try:
            client.connect()
        except Exception as exc:
            if self._client is not client:
                return
            self._logger.debug("WhatsApp client connect failed", exc_info=True)
            self._emit(
                ConnectionUpdate(
                    connection=ConnectionPhase.CLOSE,
                    reason=DisconnectReason.CONNECTION_FAILED,
                    error_message=str(exc) or type(exc).__name__,
                )
            )

    def send_text(self, chat: str, text: str) -> None:
        """Send *text* to *chat* (a ``user@server`` JID string)."""
        client = self._client
        if client is None or not self._running:
            raise CasperNotConnectedError("WhatsApp runtime is not running")
        jid = self._chats.get(chat)
        if jid is None:
            user, _, server = chat.partition("@")
            jid = build_jid(user, server or "s.whatsapp.net")
        try:
            client.send_message(jid, text)
        except Exception as exc:
            raise CasperSendError(f"Send to {mask_jid(chat)} failed: {exc}", chat=chat) from exc

    def stop(self) -> None:
        """Disconnect the current client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._thread = None

        if client is None:
            return
        if was_running:
            self._logger.debug("WhatsApp disconnect requested")
            try:
                client.disconnect()
            except Exception:
                self._logger.debug("WhatsApp disconnect failed", exc_info=True)
        self._logger.debug("WhatsApp runtime stopped")
