"""
Configuration for release-deployer.

Configuration is read from a YAML file, filled in with defaults, then
overridden from the environment (GITHUB_TOKEN, VERIFY_CHECKSUMS).
"""

import os
import re
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from release_deployer.exceptions import ConfigError
from release_deployer.models.slot import Slot, slot_directory

DEFAULT_CONFIG_PATH = "config.yaml"

_SIZE_UNITS = {"": 1, "B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="info", description="Console log level")
    file: Optional[str] = Field(None, description="Log file path; console only when unset")
    max_size: str = Field(default="10MB", description="Rotate the log file at this size")
    max_backups: int = Field(default=5, description="Rotated log files to keep")
    max_age: int = Field(
        default=0, ge=0, description="Days to keep rotated log files; 0 disables the age limit"
    )
    json_format: bool = Field(
        default=False, alias="json", description="Write the log file as JSON lines"
    )

    model_config = {"populate_by_name": True}

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        if value.upper() not in ("DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()

    @property
    def max_bytes(self) -> int:
        """max_size parsed to bytes (e.g., "10MB" -> 10485760)."""
        match = re.fullmatch(r"\s*(\d+)\s*([KMG]?B?)\s*", self.max_size.upper())
        if not match:
            raise ConfigError(f"Invalid logging.max_size: {self.max_size}")
        number, unit = match.groups()
        if unit in ("K", "M", "G"):
            unit += "B"
        return int(number) * _SIZE_UNITS[unit]


class DeployerConfig(BaseModel):
    """Complete deployer configuration."""

    repo: str = Field(default="", description="GitHub repository as owner/name")
    asset_suffix: str = Field(default="", description="Suffix selecting the release asset")
    check_interval_seconds: int = Field(default=300, gt=0, description="Seconds between checks")
    install_dir: str = Field(default="", description="Directory holding the blue/green slots")
    current_symlink: str = Field(default="", description="Live entry point symlink path")
    run_command: Optional[str] = Field(None, description="Install command run inside the slot")
    post_deploy_script: Optional[str] = Field(
        None, description="Command run after a cutover or rollback (best-effort)"
    )
    state_file: Optional[str] = Field(
        None, description="Ledger path (default: <install_dir>/state.yaml)"
    )
    github_token: Optional[str] = Field(None, description="Token for the release feed")
    health_check_url: Optional[str] = Field(
        None, description="Health endpoint polled before cutover"
    )
    health_check_timeout: int = Field(
        default=30, gt=0, description="Health check deadline (seconds)"
    )
    verify_checksums: bool = Field(
        default=False, description="Require checksum manifest verification"
    )
    api_base_url: str = Field(
        default="https://api.github.com", description="Release feed API base"
    )
    http_timeout: float = Field(default=30.0, gt=0, description="HTTP client timeout (seconds)")
    command_timeout: Optional[float] = Field(
        None, gt=0, description="Timeout for install and post-deploy commands (seconds)"
    )
    cleanup_failed_stages: bool = Field(
        default=False, description="Remove the slot directory after a failed staging attempt"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def install_path(self) -> Path:
        return Path(self.install_dir)

    @property
    def symlink_path(self) -> Path:
        return Path(self.current_symlink)

    @property
    def state_path(self) -> Path:
        if self.state_file:
            return Path(self.state_file)
        return self.install_path / "state.yaml"

    def slot_dir(self, slot: Slot) -> Path:
        """Directory for a slot (e.g., <install_dir>/green)."""
        return slot_directory(self.install_path, slot)

    def apply_environment(self, environ: Optional[Dict[str, str]] = None) -> "DeployerConfig":
        """Apply GITHUB_TOKEN and VERIFY_CHECKSUMS overrides."""
        env = os.environ if environ is None else environ
        token = env.get("GITHUB_TOKEN")
        if token:
            self.github_token = token
        if env.get("VERIFY_CHECKSUMS", "").lower() == "true":
            self.verify_checksums = True
        return self

    def validate_required(self) -> None:
        """
        Check fields that have no sensible default.

        Raises:
            ConfigError: If repo, install_dir or current_symlink is missing
        """
        for field_name in ("repo", "install_dir", "current_symlink"):
            if not getattr(self, field_name):
                raise ConfigError(f"{field_name} is required in configuration")
        if not self.state_file:
            self.state_file = str(self.install_path / "state.yaml")
        if self.logging.max_bytes <= 0:
            raise ConfigError("logging.max_size must be positive")

    @classmethod
    def from_file(
        cls, path: str, environ: Optional[Dict[str, str]] = None
    ) -> "DeployerConfig":
        """
        Load configuration from a YAML file.

        Args:
            path: Configuration file path
            environ: Environment mapping for overrides (defaults to os.environ)

        Returns:
            Validated configuration

        Raises:
            ConfigError: If the file is missing, malformed, or incomplete
        """
        config_path = Path(path)
        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise ConfigError(f"Configuration file not found: {path}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a key/value document")

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {path}: {e}") from e

        config.apply_environment(environ)
        config.validate_required()
        return config

    def save(self, path: str) -> None:
        """Write the configuration to a YAML file."""
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(exclude_none=True, by_alias=True)
        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def generate_default_config(path: str) -> DeployerConfig:
    """Write an example configuration to path and return it."""
    config = DeployerConfig(
        repo="owner/project",
        asset_suffix="linux-amd64.tar.gz",
        install_dir="/opt/project",
        current_symlink="/opt/project/current",
        run_command="./install.sh",
        post_deploy_script="systemctl restart project",
    )
    config.save(path)
    return config
