"""Environment-driven service configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from marketfeed.errors import ConfigError

HISTORY_MODES = ("background", "inline")

_DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _env_bool(raw: Optional[str], default: bool = False) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(raw: Optional[str], default: float, *, name: str, minimum: float = 0.0) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}")
    return value


def _env_int(raw: Optional[str], default: int, *, name: str, minimum: int = 0) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}")
    return value


def _parse_origins(raw: Optional[str]) -> List[str]:
    if raw is None:
        return list(_DEFAULT_ALLOWED_ORIGINS)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings. Durations are in seconds."""

    quote_ttl: float = 30.0
    history_ttl: float = 15 * 60.0
    min_request_interval: float = 2.0
    quote_chunk_size: int = 10
    quote_chunk_pause: float = 0.5
    history_window_hours: int = 24
    history_interval: str = "15m"
    history_max_attempts: int = 3
    history_backoff: float = 2.0
    history_pacing: float = 1.5
    upstream_timeout: float = 10.0
    history_mode: str = "background"
    inline_wait_timeout: float = 30.0
    watchlist_file: str = os.path.join("data", "watchlist.json")
    allowed_origins: List[str] = field(default_factory=lambda: list(_DEFAULT_ALLOWED_ORIGINS))
    rate_limit_enabled: bool = True
    rate_limit_rpm: int = 120
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.history_mode not in HISTORY_MODES:
            raise ConfigError(f"history_mode must be one of {HISTORY_MODES}, got {self.history_mode!r}")
        if self.quote_chunk_size <= 0:
            raise ConfigError("quote_chunk_size must be positive")
        if self.history_max_attempts <= 0:
            raise ConfigError("history_max_attempts must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            quote_ttl=_env_float(env.get("MF_QUOTE_TTL"), 30.0, name="MF_QUOTE_TTL"),
            history_ttl=_env_float(env.get("MF_HISTORY_TTL"), 900.0, name="MF_HISTORY_TTL"),
            min_request_interval=_env_float(
                env.get("MF_MIN_REQUEST_INTERVAL"), 2.0, name="MF_MIN_REQUEST_INTERVAL"
            ),
            quote_chunk_size=_env_int(
                env.get("MF_QUOTE_CHUNK_SIZE"), 10, name="MF_QUOTE_CHUNK_SIZE", minimum=1
            ),
            quote_chunk_pause=_env_float(env.get("MF_QUOTE_CHUNK_PAUSE"), 0.5, name="MF_QUOTE_CHUNK_PAUSE"),
            history_window_hours=_env_int(
                env.get("MF_HISTORY_WINDOW_HOURS"), 24, name="MF_HISTORY_WINDOW_HOURS", minimum=1
            ),
            history_interval=(env.get("MF_HISTORY_INTERVAL") or "15m").strip(),
            history_max_attempts=_env_int(
                env.get("MF_HISTORY_MAX_ATTEMPTS"), 3, name="MF_HISTORY_MAX_ATTEMPTS", minimum=1
            ),
            history_backoff=_env_float(env.get("MF_HISTORY_BACKOFF"), 2.0, name="MF_HISTORY_BACKOFF"),
            history_pacing=_env_float(env.get("MF_HISTORY_PACING"), 1.5, name="MF_HISTORY_PACING"),
            upstream_timeout=_env_float(
                env.get("MF_UPSTREAM_TIMEOUT"), 10.0, name="MF_UPSTREAM_TIMEOUT", minimum=0.1
            ),
            history_mode=(env.get("MF_HISTORY_MODE") or "background").strip().lower(),
            inline_wait_timeout=_env_float(
                env.get("MF_INLINE_WAIT_TIMEOUT"), 30.0, name="MF_INLINE_WAIT_TIMEOUT"
            ),
            watchlist_file=env.get("MF_WATCHLIST_FILE") or os.path.join("data", "watchlist.json"),
            allowed_origins=_parse_origins(env.get("ALLOWED_ORIGINS")),
            rate_limit_enabled=_env_bool(env.get("MF_RATE_LIMIT_ENABLED"), True),
            rate_limit_rpm=_env_int(env.get("MF_RATE_LIMIT_RPM"), 120, name="MF_RATE_LIMIT_RPM"),
            log_level=(env.get("MF_LOG_LEVEL") or "INFO").strip().upper(),
        )
