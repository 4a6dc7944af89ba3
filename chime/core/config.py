"""
Chime Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (CHIME_*)
3. Project config (./chime.toml)
4. User config (~/.chime/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    CHIME_PREFIX → parser.prefix
    CHIME_BACKEND → scheduler.backend
    CHIME_DATA_DIR → scheduler.data_dir
    CHIME_LEEWAY_SECONDS → scheduler.leeway_seconds
    CHIME_NOTIFIER → notifier.kind
    CHIME_NOTIFIER_LOG_PATH → notifier.log_path
    CHIME_TELEGRAM_TOKEN → telegram.token
    CHIME_LOG_DIR → logging.log_dir
    CHIME_VERBOSE → logging.verbose
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from chime.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SchedulerConfig(BaseModel):
    """Scheduler and durable state configuration."""

    backend: Literal["json", "sqlite"] = "json"
    data_dir: str = "~/.chime/data"
    leeway_seconds: int = 60  # overdue entries within this window still fire
    kinds: list[str] = Field(default_factory=lambda: ["alarms", "reminders"])

    @field_validator("leeway_seconds")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("leeway_seconds must be >= 0")
        return v


class ParserConfig(BaseModel):
    """Command parsing configuration."""

    prefix: str = ".r"

    @field_validator("prefix")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("prefix cannot be empty")
        return v


class TelegramConfig(BaseModel):
    """Telegram bot notification configuration."""

    token: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.token)


class NotifierConfig(BaseModel):
    """Which notifier delivers fired entries."""

    kind: Literal["file", "telegram"] = "file"
    log_path: str = "~/.chime/notifications.log"


class LoggingConfig(BaseModel):
    """Log output configuration."""

    log_dir: str = "~/.chime/logs"
    verbose: bool = False


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ChimeConfig(BaseModel):
    """Root configuration for Chime."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> ChimeConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config (~/.chime/config.toml)
        user_config_path = user_path or Path.home() / ".chime" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./chime.toml)
        project_config_path = project_path or Path.cwd() / "chime.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return ChimeConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_data_dir(self) -> Path:
        """Resolved directory holding the durable snapshots."""
        return Path(self.scheduler.data_dir).expanduser()

    def get_log_dir(self) -> Path:
        return Path(self.logging.log_dir).expanduser()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from CHIME_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "CHIME_PREFIX": ("parser", "prefix"),
        "CHIME_BACKEND": ("scheduler", "backend"),
        "CHIME_DATA_DIR": ("scheduler", "data_dir"),
        "CHIME_LEEWAY_SECONDS": ("scheduler", "leeway_seconds"),
        "CHIME_NOTIFIER": ("notifier", "kind"),
        "CHIME_NOTIFIER_LOG_PATH": ("notifier", "log_path"),
        "CHIME_TELEGRAM_TOKEN": ("telegram", "token"),
        "CHIME_LOG_DIR": ("logging", "log_dir"),
        "CHIME_VERBOSE": ("logging", "verbose"),
    }

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            if section not in result:
                result[section] = {}
            result[section][key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    def _sub(text: str) -> str:
        for var_name in pattern.findall(text):
            text = text.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
        return text

    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _sub(value)
        elif isinstance(value, list):
            data[key] = [_sub(item) if isinstance(item, str) else item for item in value]
