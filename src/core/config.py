"""Core configuration.

- Centralizes environment variables (pydantic-settings) away from the CLI.
- Adapters and services read the same `AppSettings` contract.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_OLLAMA_HOST = "http://localhost:11434"


def get_user_config_dir() -> Path:
    """Per-user configuration directory (cross-platform, no extra dependencies)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "ollama-keeper"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "ollama-keeper"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ollama-keeper"
    return Path.home() / ".config" / "ollama-keeper"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def _parse_env_lines(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            data[key] = value
    return data


def write_user_env_vars(values: dict[str, str], *, env_path: Path | None = None) -> Path:
    """Write or update variables in the user's global .env."""

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, str] = {}
    if env_path.exists():
        existing = _parse_env_lines(env_path.read_text(encoding="utf-8"))

    existing.update({k: v for k, v in values.items() if v is not None})

    lines = ["# ollama-keeper user config (.env)"]
    for key in sorted(existing.keys()):
        lines.append(f"{key}={existing[key]}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return env_path


def normalize_host(value: str) -> str:
    """Accept `OLLAMA_HOST` style values (`0.0.0.0:11434`, `localhost`) as URLs."""

    host = value.strip().rstrip("/")
    if not host:
        return DEFAULT_OLLAMA_HOST
    if "://" not in host:
        host = f"http://{host}"
    scheme, _, rest = host.partition("://")
    # Listening on all interfaces means "reach it locally".
    if rest.startswith("0.0.0.0"):
        rest = "127.0.0.1" + rest[len("0.0.0.0"):]
    if ":" not in rest.split("/", 1)[0]:
        authority, sep, path = rest.partition("/")
        rest = f"{authority}:11434{sep}{path}"
    return f"{scheme}://{rest}"


class AppSettings(BaseSettings):
    """Central application settings."""

    model_config = SettingsConfigDict(
        env_prefix="OLLAMA_KEEPER_",
        extra="ignore",
        case_sensitive=False,
        # Project first (dev), then the user's global config.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    host: str = Field(
        default=DEFAULT_OLLAMA_HOST,
        validation_alias=AliasChoices("OLLAMA_KEEPER_HOST", "OLLAMA_HOST"),
        description="Base URL of the Ollama daemon.",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for short requests (version, tags, delete).",
    )
    pull_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Read timeout between pull progress lines (None = unbounded).",
    )
    health_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Timeout for a model liveness check (includes model load time).",
    )

    pull_max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Extra attempts after a transient pull failure.",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the first retry; doubles on each retry.",
    )
    retry_max_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for the delay between retries.",
    )

    pull_max_concurrency: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Missing models pulled in parallel by `ensure`.",
    )
    health_max_concurrency: int = Field(
        default=2,
        ge=1,
        le=32,
        description="Liveness checks run in parallel by `status`.",
    )

    required_models: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Models that must be installed (comma-separated in env).",
    )
    models_dir: Path = Field(
        default_factory=lambda: Path.home() / ".ollama" / "models",
        validation_alias=AliasChoices("OLLAMA_KEEPER_MODELS_DIR", "OLLAMA_MODELS"),
        description="Directory where the daemon stores model blobs.",
    )
    check_disk_space: bool = Field(
        default=True,
        description="Skip pulls whose estimated size exceeds the free disk space.",
    )

    log_level: str = Field(
        default="WARNING",
        description="Logging level for the CLI (DEBUG, INFO, WARNING, ERROR).",
    )

    @field_validator("host", mode="before")
    @classmethod
    def _normalize_host(cls, value: object) -> object:
        if isinstance(value, str):
            return normalize_host(value)
        return value

    @field_validator("required_models", mode="before")
    @classmethod
    def _split_models(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value
