"""Literal/keyword command matching with canned replies."""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from casperbot.config import BotConfig
from casperbot.exceptions import CasperConfigError
from casperbot.state.events import IncomingMessage

_logger = logging.getLogger(__name__)

GREETINGS: tuple[str, ...] = (
    "👋 Hello {sender}! I'm {bot}, your WhatsApp assistant!",
    "Hey {sender}! 👋 How can I help you today?",
    "Hi there {sender}! 🤖 {bot} at your service!",
)

THANKS_REPLIES: tuple[str, ...] = (
    "You're welcome! 😊",
    "Happy to help! 🤗",
    "Anytime! 👍",
    "My pleasure! 🎉",
)

_RULE = "━━━━━━━━━━━━━━━━"


@dataclass(frozen=True)
class Command:
    name: str
    aliases: frozenset[str]
    description: str
    # Wording inside the chat menu, when it differs from the status page.
    menu_description: str | None = None

    def matches(self, text: str) -> bool:
        return text in self.aliases


COMMANDS: tuple[Command, ...] = (
    Command("!ping", frozenset({"!ping", "ping"}), "Check if bot is online"),
    Command("!hello", frozenset({"!hello", "hello", "hi"}), "Get a friendly greeting"),
    Command("!time", frozenset({"!time", "time"}), "Check current time"),
    Command("!help", frozenset({"!help", "help"}), "Show all commands", menu_description="Show this menu"),
)


def format_time(now: datetime) -> str:
    """``Monday, October 19, 2026 at 03:04:05 PM``"""
    return f"{now:%A, %B} {now.day}, {now:%Y at %I:%M:%S %p}"


class CommandDispatcher:
    """Turns an incoming message into zero or more reply texts."""

    def __init__(
        self,
        config: BotConfig,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._rng = rng or random.Random()
        self._tz: ZoneInfo | None = None
        if config.time_zone:
            try:
                self._tz = ZoneInfo(config.time_zone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise CasperConfigError(f"Unknown time zone {config.time_zone!r}") from exc
        self._clock = clock or (lambda: datetime.now(self._tz))

    @property
    def commands(self) -> list[tuple[str, str]]:
        """``(name, description)`` for every command, in help order."""
        return [(command.name, command.description) for command in COMMANDS]

    def should_answer(self, message: IncomingMessage) -> bool:
        if message.from_me or not message.text.strip():
            return False
        if message.is_group and self._config.ignore_groups:
            return False
        return True

    def handle(self, message: IncomingMessage) -> list[str]:
        """Replies for *message*, in the order the commands are checked."""
        if not self.should_answer(message):
            return []

        text = message.text.strip().lower()
        replies: list[str] = []
        ping, hello, time_cmd, help_cmd = COMMANDS

        if ping.matches(text):
            replies.append(self.ping())
        if hello.matches(text):
            replies.append(self.greeting(message.sender_name))
        if time_cmd.matches(text):
            replies.append(self.current_time())
        if help_cmd.matches(text):
            replies.append(self.help_text())
        if "thank" in text:
            replies.append(self._rng.choice(THANKS_REPLIES))

        if replies:
            _logger.debug("Matched %d repl%s for %r", len(replies), "y" if len(replies) == 1 else "ies", text)
        return replies

    def ping(self) -> str:
        return f"🏓 Pong! {self._config.bot_name} is online!"

    def greeting(self, sender: str) -> str:
        template = self._rng.choice(GREETINGS)
        return template.format(sender=sender, bot=self._config.bot_name)

    def current_time(self) -> str:
        return f"🕐 Current time: {format_time(self._clock())}"

    def help_text(self) -> str:
        lines = [f"🤖 *{self._config.bot_name} Bot Commands*", "", _RULE, ""]
        lines.extend(
            f"• *{command.name}* - {command.menu_description or command.description}" for command in COMMANDS
        )
        lines.extend(["", _RULE, "✨ More features coming soon!", "💡 Made with ❤️"])
        return "\n".join(lines)
