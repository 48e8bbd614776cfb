"""Command-line entry point: ``casperbot`` / ``python -m casperbot``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from casperbot import __version__
from casperbot.bot import CasperBot
from casperbot.config import BotConfig
from casperbot.exceptions import CasperConfigError

_LOG = logging.getLogger("casperbot")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="casperbot",
        description="Command-responding WhatsApp bot with a status page.",
    )
    parser.add_argument("--host", default=None, help="Status server bind address (default: 0.0.0.0).")
    parser.add_argument("--port", type=int, default=None, help="Status server port (default: $PORT or 3000).")
    parser.add_argument(
        "--session-dir",
        default=None,
        help="Directory for the WhatsApp auth state (default: ./auth_info).",
    )
    parser.add_argument("--bot-name", default=None, help="Name used in replies (default: Casper).")
    parser.add_argument(
        "--time-zone",
        default=None,
        help="IANA time zone for the time command (default: local time).",
    )
    parser.add_argument(
        "--no-terminal-qr",
        action="store_true",
        help="Do not print pairing QR codes to the terminal.",
    )
    parser.add_argument(
        "--ignore-groups",
        action="store_true",
        help="Do not answer commands in group chats.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> BotConfig:
    overrides: dict[str, object] = {
        "host": args.host,
        "port": args.port,
        "session_dir": args.session_dir,
        "bot_name": args.bot_name,
        "time_zone": args.time_zone,
    }
    if args.no_terminal_qr:
        overrides["terminal_qr"] = False
    if args.ignore_groups:
        overrides["ignore_groups"] = True
    return BotConfig.from_env(**overrides)


def _print_banner(config: BotConfig, url: str) -> None:
    rule = "=" * 50
    print(f"\n{rule}")
    print(f"🤖 {config.bot_name.upper()} BOT STARTING UP")
    print(rule)
    print(f"🌐 Web server running on port {config.port}")
    print(f"📊 Health check: {url}/health")
    print(f"{rule}\n")


async def _run(config: BotConfig) -> None:
    async with CasperBot(config) as bot:
        if bot.server is not None:
            _print_banner(config, bot.server.url)
        await bot.run_forever()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = _config_from_args(args)
    except CasperConfigError as exc:
        _LOG.error("Invalid configuration: %s", exc)
        return 2

    try:
        asyncio.run(_run(config))
    except KeyboardInterrupt:
        pass
    except CasperConfigError as exc:
        _LOG.error("Invalid configuration: %s", exc)
        return 2
    except OSError as exc:
        _LOG.error("Could not start: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
