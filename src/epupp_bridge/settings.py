"""Bridge settings configuration.

Environment variables:
    EPUPP_NREPL_HOST - Relay host (default: localhost)
    EPUPP_NREPL_PORT - Relay nREPL port (default: 12345)
    EPUPP_NREPL_CONNECT_TIMEOUT - Connect timeout in seconds (default: 5)
    EPUPP_NREPL_READ_TIMEOUT - Per-read timeout in seconds (default: 30)
    EPUPP_NREPL_MAX_RESPONSE_BYTES - Response cap, e.g. "512K" or "8M" (default: 8M)
    EPUPP_NREPL_POLL_INTERVAL_MS - Delay between probes (default: 20)
    EPUPP_NREPL_PENDING_SENTINEL - Value meaning "not resolved yet" (default: :pending)
    EPUPP_NREPL_LOG_LEVEL - Logging level, NONE to silence (default: WARNING)
"""

import re
from typing import cast

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from epupp_bridge.models import Endpoint

_UNITS = {"": 1, "k": 1024, "m": 1024 * 1024}
_LEVELS = {"CRITICAL", "FATAL", "ERROR", "WARNING", "WARN", "INFO", "DEBUG", "NOTSET", "NONE"}


class BridgeSettings(BaseSettings):
    """Configuration for bridge clients and pollers."""

    host: str = "localhost"
    port: int = 12345
    connect_timeout: float = 5.0  # seconds
    read_timeout: float = 30.0  # seconds, per read
    max_response_bytes: int = 8 * 1024 * 1024
    poll_interval_ms: int = 20
    pending_sentinel: str = ":pending"
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="EPUPP_NREPL_"
    )

    @field_validator("max_response_bytes", mode="before")
    @classmethod
    def _parse_size(cls, v: str | int) -> int:
        if isinstance(v, int):
            return cast(int, v)
        m = re.fullmatch(r"\s*(\d+)\s*([KkMm]?)\s*", v)
        if m:
            n, unit = m.groups()
            return int(n) * _UNITS[unit.lower()]
        raise ValueError("max_response_bytes must be an int or '<number>[K|M]'")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        level = str(v).strip().upper()
        if level not in _LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LEVELS)}")
        return level

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(host=self.host, port=self.port)


def get_settings() -> BridgeSettings:
    """Build settings from the current environment."""
    return BridgeSettings()
