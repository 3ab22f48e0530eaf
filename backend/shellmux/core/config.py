"""Core configuration module."""

import logging
import os
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_title: str = "shellmux"
    app_version: str = "0.1.0"
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Logging
    log_level: str = "INFO"
    log_format: str | None = None  # "json", "console", or None (auto-detect based on environment)

    # SSH sessions
    ssh_connect_timeout: float = 20.0
    ssh_keepalive_interval: float = 30.0
    ssh_term_type: str = "xterm-256color"
    ssh_default_cols: int = 80
    ssh_default_rows: int = 24
    # None disables host key verification, matching the desktop client behaviour
    ssh_known_hosts: Optional[str] = None
    metadata_command: str = "cat /etc/os-release"

    # WebSocket bridge; loopback only, the UI runs on the same machine
    bind_host: str = "127.0.0.1"
    bind_port: int = 8765
    ws_max_sessions: int = 32

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"log_level must be a logging level name, got {value!r}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        if value not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    @field_validator("ssh_connect_timeout")
    @classmethod
    def validate_connect_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("ssh_connect_timeout must be positive")
        return value

    @field_validator("ssh_default_cols", "ssh_default_rows", "ws_max_sessions")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be at least 1")
        return value


settings = Settings()
