"""
Configuration management for ESXi cloning operations.

This module handles loading and validating configuration from files and environment variables.
"""

import os
import yaml
from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .exceptions import ConfigurationError
from .logging import logger


DEFAULT_CONFIG_PATHS = [
    "~/.config/esxi-clone/config.yaml",
    "/etc/esxi-clone/config.yaml",
    "config.yaml",
]


class AppConfig(BaseModel):
    """Application configuration with Pydantic validation.

    Configuration can be loaded from:
    1. Explicit config file path
    2. Default config file locations
    3. Environment variables (highest priority)

    Environment variables:
    - ESXI_CLONE_SSH_KEY_PATH: Path to SSH private key
    - ESXI_CLONE_SSH_PORT: Default SSH port
    - ESXI_CLONE_TIMEOUT: SSH connect timeout in seconds
    - ESXI_CLONE_COMMAND_TIMEOUT: Remote command timeout in seconds (unset: wait)
    - ESXI_CLONE_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ESXI_CLONE_KNOWN_HOSTS_FILE: Path to known_hosts file
    - ESXI_CLONE_SSH_HOST_KEY_POLICY: Host key policy (strict, warn, accept)
    - ESXI_CLONE_INVENTORY: Path to the hosts inventory
    - ESXI_CLONE_STAGING_DIR: Local staging directory for copied files
    """

    model_config = ConfigDict(extra="forbid")  # Reject unknown fields

    ssh_key_path: Optional[str] = None
    ssh_port: int = Field(default=22, gt=0, le=65535, description="SSH port for inventory hosts without one")
    default_timeout: int = Field(
        default=30, gt=0, description="SSH connect timeout in seconds"
    )
    command_timeout: Optional[int] = Field(
        default=None, gt=0, description="Remote command timeout, None waits forever"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    known_hosts_file: Optional[str] = None
    host_key_policy: str = Field(default="strict", description="SSH host key policy")

    inventory_path: Optional[str] = None
    staging_dir: Optional[str] = None

    # Hard-coded fallbacks, used when neither an override nor a host default is set
    default_src_server: str = "cage7"
    default_src_name: str = "phoenix11"
    default_src_datastore: str = "infra.data"
    default_dst_network: str = "adm-srv"
    expected_kernel: str = "VMkernel"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        v = v.upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v

    @field_validator("host_key_policy")
    @classmethod
    def validate_host_key_policy(cls, v: str) -> str:
        v = v.lower()
        valid_policies = ["strict", "warn", "accept"]
        if v not in valid_policies:
            raise ValueError(f"host_key_policy must be one of {valid_policies}")
        return v


class ConfigLoader:
    """Loads and validates configuration."""

    def __init__(self) -> None:
        self.logger = logger

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """
        Load configuration from file and environment variables.

        Priority (highest to lowest):
        1. Environment variables
        2. Config file (explicit path or default locations)
        3. Default values

        Args:
            config_path: Path to configuration file. If None, looks in default locations.

        Returns:
            AppConfig: Loaded configuration
        """
        if config_path:
            config_data = self._load_data_from_file(config_path)
        else:
            config_data = {}
            for path in DEFAULT_CONFIG_PATHS:
                path = os.path.expanduser(path)
                if os.path.exists(path):
                    self.logger.info(f"Loading configuration from {path}", path=path)
                    config_data = self._load_data_from_file(path)
                    break

            if not config_data:
                self.logger.debug("No configuration file found, using defaults and environment variables")

        config_data = self._apply_env_overrides(config_data)

        try:
            return AppConfig(**config_data)
        except ValueError as e:
            self.logger.error(f"Invalid configuration: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}")

    def _apply_env_overrides(self, config_data: dict) -> dict:
        """Apply environment variable overrides to config data."""
        env_mappings = {
            'ESXI_CLONE_SSH_KEY_PATH': 'ssh_key_path',
            'ESXI_CLONE_SSH_PORT': ('ssh_port', int),
            'ESXI_CLONE_TIMEOUT': ('default_timeout', int),
            'ESXI_CLONE_COMMAND_TIMEOUT': ('command_timeout', int),
            'ESXI_CLONE_LOG_LEVEL': 'log_level',
            'ESXI_CLONE_KNOWN_HOSTS_FILE': 'known_hosts_file',
            'ESXI_CLONE_SSH_HOST_KEY_POLICY': 'host_key_policy',
            'ESXI_CLONE_INVENTORY': 'inventory_path',
            'ESXI_CLONE_STAGING_DIR': 'staging_dir',
        }

        for env_var, mapping in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                if isinstance(mapping, tuple):
                    config_key, converter = mapping
                    try:
                        config_data[config_key] = converter(env_value)
                        self.logger.debug(f"Applied environment override: {env_var}={env_value}")
                    except (ValueError, TypeError) as e:
                        self.logger.warning(
                            f"Invalid value for {env_var}: {env_value}, ignoring. Error: {e}"
                        )
                else:
                    config_data[mapping] = env_value
                    self.logger.debug(f"Applied environment override: {env_var}={env_value}")

        return config_data

    def _load_data_from_file(self, path: str) -> dict:
        """Load configuration data from a specific file."""
        return load_yaml_mapping(path)


def load_yaml_mapping(path: str) -> dict:
    """Read a YAML file that must hold a mapping; an empty file yields ``{}``."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse {path}: {e}", path=path)
        raise ConfigurationError(f"Failed to parse {path}: {e}")
    except OSError as e:
        logger.error(f"Failed to read {path}: {e}", path=path)
        raise ConfigurationError(f"Failed to read {path}: {e}")

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid configuration format in {path}")

    return data


# Global config loader
config_loader = ConfigLoader()
