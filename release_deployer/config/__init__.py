"""Configuration loading for release-deployer."""

from release_deployer.config.settings import (
    DEFAULT_CONFIG_PATH,
    DeployerConfig,
    LoggingConfig,
    generate_default_config,
)

__all__ = ["DEFAULT_CONFIG_PATH", "DeployerConfig", "LoggingConfig", "generate_default_config"]
