"""casperbot - command-responding WhatsApp bot with a status page."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("casperbot")
except PackageNotFoundError:
    __version__ = "0+local"
from casperbot.bot import CasperBot
from casperbot.commands import CommandDispatcher
from casperbot.config import BotConfig
from casperbot.connection import ConnectionManager
from casperbot.exceptions import (
    CasperConfigError,
    CasperConnectionError,
    CasperError,
    CasperNotConnectedError,
    CasperSendError,
    CasperSessionError,
)
from casperbot.server import StatusServer, create_app
from casperbot.state.events import (
    ConnectionPhase,
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    IncomingMessage,
)
from casperbot.state.policy import RetryPolicy
from casperbot.state.store import BotState, LatestQR, RetryCounter

__all__ = [
    "__version__",
    "BotConfig",
    "BotState",
    "CasperBot",
    "CasperConfigError",
    "CasperConnectionError",
    "CasperError",
    "CasperNotConnectedError",
    "CasperSendError",
    "CasperSessionError",
    "CommandDispatcher",
    "ConnectionManager",
    "ConnectionPhase",
    "ConnectionState",
    "ConnectionUpdate",
    "CredentialsUpdate",
    "DisconnectReason",
    "IncomingMessage",
    "LatestQR",
    "RetryCounter",
    "RetryPolicy",
    "StatusServer",
    "create_app",
]
