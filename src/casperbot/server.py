"""aiohttp status server: HTML status page, JSON health and QR endpoints."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime

from aiohttp import web

from casperbot._pages import render_status_page
from casperbot.config import BotConfig
from casperbot.state.store import BotState

_logger = logging.getLogger(__name__)

STATE_KEY = web.AppKey("state", BotState)
CONFIG_KEY = web.AppKey("config", BotConfig)
COMMANDS_KEY = web.AppKey("commands", list)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error_response(code: str, message: str, status: int) -> web.Response:
    return web.json_response({"error": {"code": code, "message": message}, "status": status}, status=status)


@web.middleware
async def error_handling_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Format every error as ``{"error": {"code", "message"}, "status"}``."""
    try:
        return await handler(request)
    except web.HTTPException as exc:
        if exc.status < 400:
            raise
        code = exc.reason.upper().replace(" ", "_") if exc.reason else "HTTP_ERROR"
        return _error_response(code, exc.reason or str(exc), exc.status)
    except Exception:
        _logger.exception("Unexpected error handling %s %s", request.method, request.path)
        return _error_response("INTERNAL_ERROR", "An unexpected error occurred", 500)


@web.middleware
async def request_logging_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    start = time.perf_counter()
    response = await handler(request)
    _logger.debug(
        "%s %s -> %s (%.1f ms)",
        request.method,
        request.path,
        response.status,
        (time.perf_counter() - start) * 1000,
    )
    return response


async def handle_index(request: web.Request) -> web.Response:
    app = request.app
    config = app[CONFIG_KEY]
    body = render_status_page(
        app[STATE_KEY],
        bot_name=config.bot_name,
        version=config.version,
        commands=app[COMMANDS_KEY],
    )
    return web.Response(text=body, content_type="text/html")


async def handle_health(request: web.Request) -> web.Response:
    app = request.app
    return web.json_response(
        {
            "status": "healthy",
            "bot": app[CONFIG_KEY].bot_name,
            "connection": app[STATE_KEY].connection.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )


async def handle_qr(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    return web.json_response(
        {
            "qr": state.qr.image if state.qr is not None else None,
            "status": state.connection.value,
            "retry": state.retry.value,
        }
    )


async def handle_status(request: web.Request) -> web.Response:
    return web.json_response(request.app[STATE_KEY].snapshot())


def create_app(
    state: BotState,
    config: BotConfig,
    commands: Iterable[tuple[str, str]] = (),
) -> web.Application:
    """Build the status application around *state*."""
    app = web.Application(middlewares=[request_logging_middleware, error_handling_middleware])
    app[STATE_KEY] = state
    app[CONFIG_KEY] = config
    app[COMMANDS_KEY] = list(commands)
    app.router.add_get("/", handle_index)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/api/qr", handle_qr)
    app.router.add_get("/api/status", handle_status)
    return app


class StatusServer:
    """Runs the status application on the current event loop."""

    def __init__(
        self,
        state: BotState,
        config: BotConfig,
        commands: Iterable[tuple[str, str]] = (),
    ) -> None:
        self._state = state
        self._config = config
        self._commands = list(commands)
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    @property
    def url(self) -> str:
        host = "localhost" if self._config.host in {"0.0.0.0", "::"} else self._config.host
        return f"http://{host}:{self._config.port}"

    async def start(self) -> None:
        if self._runner is not None:
            _logger.warning("Status server already running")
            return
        runner = web.AppRunner(create_app(self._state, self._config, self._commands), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        self._site = site
        _logger.info("Web server running on port %d", self._config.port)

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        self._site = None
        if runner is None:
            return
        await runner.cleanup()
        _logger.info("Status server stopped")
