"""
Configuration management for seatflow.

Loads config.yaml from $SEATFLOW_HOME (default ~/.config/seatflow).
"""

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from seatflow.errors import ConfigError


CONFIG_FILENAME = "config.yaml"


@dataclass
class SeatflowConfig:
    """
    Runtime configuration.

    Attributes:
        approval_timeout_seconds: How long a batch waits for approval before cancelling
        completion_wait_seconds: Local wait budget at the request boundary
        store_dir: Directory for file-backed history (None keeps history in memory)
        max_workers: Activity worker pool size
        activity_max_attempts: Attempts per activity for transient failures
        activity_retry_backoff_seconds: Initial backoff between activity attempts
        random_seed: Seed for the activity random source (None = unseeded)
        inventory_file: YAML seat fixture (None = built-in fixture)
        log_level: DEBUG, INFO, WARNING, ERROR
        log_format: "pretty" (rich console) or "structured" (JSON)
        log_file: Optional log file path
        env_file: Optional .env file loaded into the process environment
    """
    approval_timeout_seconds: float = 20.0
    completion_wait_seconds: float = 30.0
    store_dir: Optional[str] = None
    max_workers: int = 8
    activity_max_attempts: int = 3
    activity_retry_backoff_seconds: float = 0.5
    random_seed: Optional[int] = None
    inventory_file: Optional[str] = None
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigError: If a value is out of range
        """
        if self.approval_timeout_seconds <= 0:
            raise ConfigError("approval_timeout_seconds must be > 0")
        if self.completion_wait_seconds <= 0:
            raise ConfigError("completion_wait_seconds must be > 0")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be >= 1")
        if self.activity_max_attempts < 1:
            raise ConfigError("activity_max_attempts must be >= 1")
        if self.activity_retry_backoff_seconds < 0:
            raise ConfigError("activity_retry_backoff_seconds must be >= 0")
        if self.log_format not in ("pretty", "structured"):
            raise ConfigError(f"log_format must be 'pretty' or 'structured', got {self.log_format!r}")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Unknown log_level: {self.log_level}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeatflowConfig":
        """
        Build a config from a mapping, rejecting unknown keys.

        Raises:
            ConfigError: If keys are unknown or values invalid
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}")
        try:
            config = cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid config: {e}")
        config.validate()
        return config


def get_seatflow_home() -> Path:
    """Config directory: $SEATFLOW_HOME or ~/.config/seatflow."""
    home = os.environ.get("SEATFLOW_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/seatflow").expanduser()


def load_config(config_path: Optional[Path] = None) -> SeatflowConfig:
    """
    Load seatflow configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $SEATFLOW_HOME/config.yaml

    Returns:
        SeatflowConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_seatflow_home() / CONFIG_FILENAME

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"seatflow config.yaml not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = SeatflowConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config
