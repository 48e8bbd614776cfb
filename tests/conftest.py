from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from casperbot._runtime import EventCallback
from casperbot.config import BotConfig
from casperbot.state.events import RuntimeEvent


class FakeRuntime:
    """In-memory stand-in for the neonize runtime."""

    def __init__(self, on_event: EventCallback, *, fail_start: bool = False, start_delay: float = 0.0) -> None:
        self._on_event = on_event
        self._fail_start = fail_start
        self._start_delay = start_delay
        self.started = False
        self.stopped = False
        self.sent: list[tuple[str, str]] = []

    @property
    def is_running(self) -> bool:
        return self.started and not self.stopped

    def start(self) -> None:
        if self._start_delay:
            # Blocks the executor thread like a real handshake.
            time.sleep(self._start_delay)
        if self._fail_start:
            raise ConnectionError("network unreachable")
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def send_text(self, chat: str, text: str) -> None:
        self.sent.append((chat, text))

    def emit(self, event: RuntimeEvent) -> None:
        self._on_event(event)


class RuntimeRecorder:
    """Runtime factory that records every runtime it builds."""

    def __init__(self) -> None:
        self.runtimes: list[FakeRuntime] = []
        self.fail_next = 0
        self.start_delay = 0.0

    def __call__(self, config: BotConfig, loop: asyncio.AbstractEventLoop, on_event: EventCallback) -> FakeRuntime:
        fail = self.fail_next > 0
        if fail:
            self.fail_next -= 1
        runtime = FakeRuntime(on_event, fail_start=fail, start_delay=self.start_delay)
        self.runtimes.append(runtime)
        return runtime

    @property
    def latest(self) -> FakeRuntime:
        return self.runtimes[-1]


@pytest.fixture
def session_dir(tmp_path: Path) -> Path:
    return tmp_path / "auth_info"


@pytest.fixture
def config(session_dir: Path) -> BotConfig:
    return BotConfig(
        session_dir=session_dir,
        reconnect_base_delay=0.01,
        reconnect_factor=1.0,
        reconnect_max_delay=0.01,
        max_retries=3,
        terminal_qr=False,
    )


@pytest.fixture
def recorder() -> RuntimeRecorder:
    return RuntimeRecorder()


@pytest.fixture
def wait_until() -> Callable[..., object]:
    async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_until
