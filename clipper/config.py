"""
Configuration management for clipper.

Loads config.yaml from the clipper home directory, loads the optional
env_file into the process environment, and overlays environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from clipper.errors import ConfigError
from clipper.key_rotation import key_file_name, parse_key_lines


DEFAULT_HOME = "~/.config/clipper"

# config.yaml key -> environment variable that overrides it
ENV_OVERRIDES = {
    "github_owner": "GITHUB_OWNER",
    "github_repo": "GITHUB_REPO",
    "github_token": "GH_PAT",
    "telegram_token": "TELEGRAM_TOKEN",
    "telegram_chat_id": "CHAT_ID",
}


def get_clipper_home() -> Path:
    """Return the clipper home directory ($CLIPPER_HOME or ~/.config/clipper)."""
    home = os.environ.get("CLIPPER_HOME")
    if home:
        return Path(home).expanduser()
    return Path(DEFAULT_HOME).expanduser()


def get_config_path() -> Path:
    return get_clipper_home() / "config.yaml"


@dataclass
class ClipperConfig:
    """Complete clipper configuration."""

    github_owner: str = ""
    github_repo: str = ""
    github_token: str = ""
    workflow_id: str = "render.yml"
    ref: str = "main"
    telegram_token: str = ""
    telegram_chat_id: str = ""
    keys_dir: Optional[str] = None
    token_key: str = "worker_id"
    token_prefix: str = "clipper"
    poll_interval: float = 5.0
    poll_timeout: float = 600.0
    correlation_tolerance: float = 10.0
    runs_per_page: int = 10
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClipperConfig":
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**values, extra=extra)

    @classmethod
    def from_env(cls) -> "ClipperConfig":
        """Build a config from environment variables only."""
        config = cls()
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Overlay environment variables onto the loaded values."""
        for attr, env_var in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                setattr(self, attr, value)

    def get_keys_dir(self) -> Path:
        """Directory holding <service>-keys.txt files."""
        if self.keys_dir:
            return Path(self.keys_dir).expanduser()
        return get_clipper_home() / "keys"

    def github_pool_keys(self) -> list[str]:
        """Usable keys in the github pool file, ignoring comments and blanks."""
        pool_file = self.get_keys_dir() / key_file_name("github")
        if not pool_file.exists():
            return []
        return parse_key_lines(pool_file.read_text())

    @property
    def has_telegram(self) -> bool:
        return bool(self.telegram_token and self.telegram_chat_id)

    def validate(self, require_telegram: bool = False) -> None:
        """
        Validate configuration.

        Collects every problem so the user can fix them in one pass.

        Raises:
            ConfigError: If required settings are missing or invalid
        """
        errors: list[str] = []

        if not self.github_token and not self.github_pool_keys():
            errors.append("GH_PAT environment variable is required")
        if not self.github_owner or not self.github_repo:
            errors.append("GITHUB_OWNER and GITHUB_REPO environment variables required")
        if require_telegram:
            if not self.telegram_token:
                errors.append("TELEGRAM_TOKEN environment variable is required")
            if not self.telegram_chat_id:
                errors.append("CHAT_ID environment variable required")
        if self.poll_interval <= 0:
            errors.append("poll_interval must be positive")
        if self.poll_timeout <= 0:
            errors.append("poll_timeout must be positive")
        if self.runs_per_page < 1:
            errors.append("runs_per_page must be >= 1")

        if errors:
            raise ConfigError("\n".join(errors))

    def to_dict(self) -> dict[str, Any]:
        result = {f: getattr(self, f) for f in self.__dataclass_fields__ if f != "extra"}
        result.update(self.extra)
        return result


def load_config(config_path: Optional[Path] = None) -> ClipperConfig:
    """
    Load clipper configuration.

    Args:
        config_path: Path to config file. Defaults to $CLIPPER_HOME/config.yaml

    Returns:
        ClipperConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the YAML is invalid
    """
    if config_path is None:
        config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"clipper config.yaml not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a mapping: {config_path}")

    config = ClipperConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    config.apply_env()
    return config
