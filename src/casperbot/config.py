"""Bot configuration for casperbot."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from casperbot.exceptions import CasperConfigError

if TYPE_CHECKING:
    from casperbot.state.policy import RetryPolicy


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(value)
    except ValueError as exc:
        raise CasperConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class BotConfig:
    """Bot configuration.

    Parameters
    ----------
    bot_name : str
        Name the bot uses in replies and on the status page.
    host : str
        Interface the status server binds to.
    port : int
        Status server port.
    session_dir : Path
        Directory holding the protocol library's auth state.
    reconnect_base_delay : float
        Seconds to wait before the first reconnect attempt.
    reconnect_factor : float
        Multiplier applied to the delay for each further attempt.
    reconnect_max_delay : float
        Upper bound for a single reconnect delay in seconds.
    max_retries : int
        Consecutive failed attempts after which the bot gives up.
    clear_session_on_logout : bool
        Delete the stored auth state and restart pairing after a logout.
    terminal_qr : bool
        Print pairing QR codes to the terminal.
    ignore_groups : bool
        Do not answer commands sent in group chats.
    time_zone : str or None
        IANA time zone for the ``time`` command. Local time when unset.
    version : str
        Version shown on the status page.
    """

    bot_name: str = "Casper"
    host: str = "0.0.0.0"
    port: int = 3000
    session_dir: Path = Path("./auth_info")
    reconnect_base_delay: float = 5.0
    reconnect_factor: float = 2.0
    reconnect_max_delay: float = 60.0
    max_retries: int = 10
    clear_session_on_logout: bool = True
    terminal_qr: bool = True
    ignore_groups: bool = False
    time_zone: str | None = None
    version: str = "1.0.0"

    def __post_init__(self) -> None:
        if not isinstance(self.session_dir, Path):
            object.__setattr__(self, "session_dir", Path(self.session_dir))
        if not 0 < self.port < 65536:
            raise CasperConfigError(f"port must be between 1 and 65535, got {self.port}")
        if self.reconnect_base_delay < 0 or self.reconnect_max_delay < 0:
            raise CasperConfigError("reconnect delays must not be negative")
        if self.reconnect_factor < 1:
            raise CasperConfigError(f"reconnect_factor must be >= 1, got {self.reconnect_factor}")
        if self.max_retries < 1:
            raise CasperConfigError(f"max_retries must be >= 1, got {self.max_retries}")

    @property
    def session_db_path(self) -> Path:
        """Path of the library's session database inside ``session_dir``."""
        return self.session_dir / "session.sqlite3"

    def retry_policy(self) -> RetryPolicy:
        """Build the reconnect policy described by this configuration."""
        from casperbot.state.policy import RetryPolicy

        return RetryPolicy(
            base_delay=self.reconnect_base_delay,
            factor=self.reconnect_factor,
            max_delay=self.reconnect_max_delay,
            max_retries=self.max_retries,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> BotConfig:
        """Create configuration from environment variables.

        Reads ``PORT`` plus the optional ``CASPER_*`` variables. Explicit
        keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        BotConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "CASPER_BOT_NAME": "bot_name",
            "CASPER_HOST": "host",
            "CASPER_SESSION_DIR": "session_dir",
            "CASPER_TIME_ZONE": "time_zone",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = val

        # CASPER_PORT wins over the generic PORT used by hosting platforms
        port_env = env.get("CASPER_PORT") or env.get("PORT")
        if port_env:
            config_kwargs["port"] = _env_number("PORT", port_env, int)

        _ENV_NUMBER_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "CASPER_RECONNECT_BASE_DELAY": ("reconnect_base_delay", float),
            "CASPER_RECONNECT_FACTOR": ("reconnect_factor", float),
            "CASPER_RECONNECT_MAX_DELAY": ("reconnect_max_delay", float),
            "CASPER_MAX_RETRIES": ("max_retries", int),
        }
        for env_key, (field_name, kind) in _ENV_NUMBER_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = _env_number(env_key, val, kind)

        _ENV_BOOL_MAP = {
            "CASPER_CLEAR_SESSION_ON_LOGOUT": ("clear_session_on_logout", True),
            "CASPER_TERMINAL_QR": ("terminal_qr", True),
            "CASPER_IGNORE_GROUPS": ("ignore_groups", False),
        }
        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update({key: value for key, value in overrides.items() if value is not None})

        if "session_dir" in config_kwargs:
            config_kwargs["session_dir"] = Path(config_kwargs["session_dir"])

        return cls(**config_kwargs)
