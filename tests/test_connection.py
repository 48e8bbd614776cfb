from __future__ import annotations

import asyncio
import dataclasses
import io
import logging

import pytest

from casperbot.config import BotConfig
from casperbot.connection import ConnectionManager
from casperbot.exceptions import CasperNotConnectedError
from casperbot.state.events import (
    ConnectionPhase,
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    IncomingMessage,
)
from casperbot.state.store import BotState

OPEN = ConnectionUpdate(connection=ConnectionPhase.OPEN, user_id="31612345678@s.whatsapp.net", user_name="Casper")


def _close(reason: DisconnectReason) -> ConnectionUpdate:
    return ConnectionUpdate(connection=ConnectionPhase.CLOSE, reason=reason, error_message="stream closed")


def _manager(config: BotConfig, recorder, **kwargs) -> ConnectionManager:
    return ConnectionManager(config, BotState(max_retries=config.max_retries), runtime_factory=recorder, **kwargs)


@pytest.mark.asyncio
async def test_start_creates_session_dir_and_runtime(config, recorder) -> None:
    manager = _manager(config, recorder)
    await manager.start()

    assert config.session_dir.is_dir()
    assert recorder.latest.started
    assert manager.state.connection == ConnectionState.CONNECTING
    await manager.stop()


@pytest.mark.asyncio
async def test_qr_then_open(config, recorder) -> None:
    manager = _manager(config, recorder)
    await manager.start()

    recorder.latest.emit(ConnectionUpdate(qr="2@abc,def,ghi"))
    assert manager.state.connection == ConnectionState.AWAITING_SCAN
    assert manager.state.qr is not None
    assert manager.state.qr.code == "2@abc,def,ghi"
    assert manager.state.qr.image.startswith("data:image/svg+xml;base64,")

    # Library keeps reporting "connecting" while the QR is on screen.
    recorder.latest.emit(ConnectionUpdate(connection=ConnectionPhase.CONNECTING))
    assert manager.state.connection == ConnectionState.AWAITING_SCAN

    manager.state.retry.increment()
    recorder.latest.emit(OPEN)
    assert manager.state.connection == ConnectionState.CONNECTED
    assert manager.state.qr is None
    assert manager.state.retry.value == 0
    assert manager.state.user is not None
    assert manager.state.user.name == "Casper"
    await manager.stop()


@pytest.mark.asyncio
async def test_new_qr_replaces_previous(config, recorder) -> None:
    manager = _manager(config, recorder)
    await manager.start()

    recorder.latest.emit(ConnectionUpdate(qr="first"))
    first = manager.state.qr
    recorder.latest.emit(ConnectionUpdate(qr="second"))

    assert manager.state.qr is not None
    assert manager.state.qr.code == "second"
    assert manager.state.qr != first
    await manager.stop()


@pytest.mark.asyncio
async def test_terminal_qr_printed_with_link_steps(config, recorder) -> None:
    stream = io.StringIO()
    manager = _manager(dataclasses.replace(config, terminal_qr=True), recorder, qr_stream=stream)
    await manager.start()

    recorder.latest.emit(ConnectionUpdate(qr="2@abc"))

    output = stream.getvalue()
    assert "Scan this QR code" in output
    assert 'Select "Linked Devices"' in output
    await manager.stop()


@pytest.mark.asyncio
async def test_connection_lost_reconnects_with_new_runtime(config, recorder, wait_until) -> None:
    manager = _manager(config, recorder)
    await manager.start()
    first = recorder.latest
    first.emit(OPEN)

    first.emit(_close(DisconnectReason.CONNECTION_LOST))
    assert manager.state.connection == ConnectionState.DISCONNECTED
    assert manager.state.retry.value == 1
    assert manager.state.last_error == "stream closed"

    await wait_until(lambda: len(recorder.runtimes) == 2 and manager.runtime is recorder.latest)
    assert first.stopped
    assert recorder.latest.started

    recorder.latest.emit(OPEN)
    assert manager.state.retry.value == 0
    assert manager.state.last_error is None
    await manager.stop()


@pytest.mark.asyncio
async def test_only_one_reconnect_pending(config, recorder, wait_until) -> None:
    manager = _manager(dataclasses.replace(config, reconnect_base_delay=0.05, reconnect_max_delay=0.05), recorder)
    await manager.start()
    runtime = recorder.latest

    runtime.emit(_close(DisconnectReason.CONNECTION_LOST))
    runtime.emit(_close(DisconnectReason.CONNECTION_FAILED))

    assert manager.reconnect_pending
    assert manager.state.retry.value == 1
    await wait_until(lambda: len(recorder.runtimes) == 2)
    await asyncio.sleep(0.1)
    assert len(recorder.runtimes) == 2
    await manager.stop()


@pytest.mark.asyncio
async def test_open_after_drop_cancels_pending_reconnect(config, recorder) -> None:
    manager = _manager(dataclasses.replace(config, reconnect_base_delay=0.1, reconnect_max_delay=0.1), recorder)
    await manager.start()
    runtime = recorder.latest
    runtime.emit(OPEN)

    runtime.emit(_close(DisconnectReason.CONNECTION_LOST))
    assert manager.reconnect_pending
    # The library re-established the session by itself.
    runtime.emit(OPEN)
    assert not manager.reconnect_pending

    await asyncio.sleep(0.3)
    assert len(recorder.runtimes) == 1
    assert not runtime.stopped
    assert manager.runtime is runtime
    assert manager.state.connection == ConnectionState.CONNECTED
    assert manager.state.retry.value == 0
    await manager.stop()


@pytest.mark.asyncio
async def test_stop_during_reconnect_start_stops_new_runtime(config, recorder, wait_until) -> None:
    manager = _manager(config, recorder)
    await manager.start()
    first = recorder.latest

    recorder.start_delay = 0.3
    first.emit(_close(DisconnectReason.CONNECTION_LOST))
    await wait_until(lambda: len(recorder.runtimes) == 2)
    second = recorder.latest
    assert not second.started

    await manager.stop()

    assert second.started
    assert second.stopped
    assert manager.runtime is None
    assert manager.state.connection == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_start_failure_is_logged_and_retried(config, recorder, wait_until, caplog) -> None:
    recorder.fail_next = 1
    manager = _manager(config, recorder)

    with caplog.at_level(logging.ERROR, logger="casperbot.connection"):
        await manager.start()

    assert "Error connecting to WhatsApp" in caplog.text
    assert manager.state.last_error == "network unreachable"
    assert manager.state.retry.value == 1

    await wait_until(lambda: len(recorder.runtimes) == 2 and manager.runtime is recorder.latest)
    assert manager.runtime is recorder.latest
    await manager.stop()


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(config, recorder, wait_until) -> None:
    recorder.fail_next = 100
    manager = _manager(config, recorder)
    await manager.start()

    await wait_until(lambda: manager.state.connection == ConnectionState.ERROR)
    # Initial attempt plus one per retry.
    assert len(recorder.runtimes) == config.max_retries + 1
    assert manager.state.retry.exhausted
    assert not manager.reconnect_pending
    await manager.stop()


@pytest.mark.asyncio
async def test_logout_clears_session_and_restarts_pairing(config, recorder, wait_until) -> None:
    manager = _manager(config, recorder)
    await manager.start()
    (config.session_dir / "session.sqlite3").write_text("keys")
    (config.session_dir / "nested").mkdir()
    (config.session_dir / "nested" / "pre-key-1.json").write_text("{}")
    first = recorder.latest
    first.emit(OPEN)
    manager.state.retry.increment()

    first.emit(_close(DisconnectReason.LOGGED_OUT))
    assert manager.state.connection == ConnectionState.LOGGED_OUT

    await wait_until(lambda: len(recorder.runtimes) == 2)
    assert first.stopped
    assert config.session_dir.is_dir()
    assert list(config.session_dir.iterdir()) == []
    assert manager.state.retry.value == 0
    assert manager.state.user is None
    assert manager.state.connection == ConnectionState.CONNECTING
    await manager.stop()


@pytest.mark.asyncio
async def test_logout_without_clearing_keeps_session(config, recorder) -> None:
    manager = _manager(dataclasses.replace(config, clear_session_on_logout=False), recorder)
    await manager.start()
    (config.session_dir / "session.sqlite3").write_text("keys")

    recorder.latest.emit(_close(DisconnectReason.LOGGED_OUT))
    await asyncio.sleep(0.05)

    assert manager.state.connection == ConnectionState.LOGGED_OUT
    assert (config.session_dir / "session.sqlite3").exists()
    assert len(recorder.runtimes) == 1
    assert not manager.reconnect_pending
    await manager.stop()


@pytest.mark.asyncio
async def test_replaced_session_is_not_retried(config, recorder) -> None:
    manager = _manager(config, recorder)
    await manager.start()

    recorder.latest.emit(_close(DisconnectReason.CONNECTION_REPLACED))
    await asyncio.sleep(0.05)

    assert manager.state.connection == ConnectionState.ERROR
    assert len(recorder.runtimes) == 1
    assert recorder.latest.stopped
    await manager.stop()


@pytest.mark.asyncio
async def test_events_from_previous_runtime_are_ignored(config, recorder, wait_until) -> None:
    manager = _manager(config, recorder)
    await manager.start()
    first = recorder.latest
    first.emit(_close(DisconnectReason.CONNECTION_LOST))
    await wait_until(lambda: len(recorder.runtimes) == 2)

    first.emit(OPEN)

    assert manager.state.connection == ConnectionState.CONNECTING
    await manager.stop()


@pytest.mark.asyncio
async def test_messages_are_delivered_and_handler_errors_logged(config, recorder, wait_until, caplog) -> None:
    received: list[IncomingMessage] = []

    async def handler(message: IncomingMessage) -> None:
        received.append(message)
        if message.text == "boom":
            raise RuntimeError("handler exploded")

    manager = _manager(config, recorder, on_message=handler)
    await manager.start()

    with caplog.at_level(logging.ERROR, logger="casperbot.connection"):
        recorder.latest.emit(IncomingMessage(message_id="1", chat="123@s.whatsapp.net", text="!ping"))
        recorder.latest.emit(IncomingMessage(message_id="2", chat="123@s.whatsapp.net", text="boom"))
        await wait_until(lambda: len(received) == 2)
        await asyncio.sleep(0)

    assert manager.state.messages_received == 2
    assert "Message handler failed for message 2" in caplog.text
    await manager.stop()


@pytest.mark.asyncio
async def test_credentials_update_recorded(config, recorder) -> None:
    manager = _manager(config, recorder)
    await manager.start()

    update = CredentialsUpdate()
    recorder.latest.emit(update)

    assert manager.state.creds_updated_at == update.observed_at
    await manager.stop()


@pytest.mark.asyncio
async def test_send_text_requires_connection(config, recorder) -> None:
    manager = _manager(config, recorder)
    await manager.start()

    with pytest.raises(CasperNotConnectedError):
        await manager.send_text("123@s.whatsapp.net", "hello")

    recorder.latest.emit(OPEN)
    await manager.send_text("123@s.whatsapp.net", "hello")
    assert recorder.latest.sent == [("123@s.whatsapp.net", "hello")]
    await manager.stop()


@pytest.mark.asyncio
async def test_stop_cancels_pending_reconnect(config, recorder) -> None:
    manager = _manager(dataclasses.replace(config, reconnect_base_delay=5.0, reconnect_max_delay=5.0), recorder)
    await manager.start()
    recorder.latest.emit(_close(DisconnectReason.CONNECTION_LOST))
    assert manager.reconnect_pending

    await manager.stop()

    assert not manager.reconnect_pending
    assert manager.state.connection == ConnectionState.DISCONNECTED
    assert len(recorder.runtimes) == 1
    # Second stop is a no-op.
    await manager.stop()


def test_clear_session_on_missing_dir_is_noop(config, recorder) -> None:
    manager = _manager(config, recorder)
    manager.clear_session()
    assert not config.session_dir.exists()
