"""
Configuration management for the raspi-io client.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (~/.config/raspi-io/config.yml or --config path)
3. Environment variables (RASPI_IO_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("~/.config/raspi-io/config.yml")
DEFAULT_ENV_PREFIX = "RASPI_IO_"

# =============================================================================
# Agent Connection Configuration
# =============================================================================


class AgentConfig(BaseModel):
    """Connection settings for the on-board agent.

    Attributes:
        host: Hostname or IP address of the board.
        port: TCP port the agent listens on.
        timeout_seconds: Socket read timeout; None blocks indefinitely.
        expected_version: Agent protocol version this client speaks.
        module_settle_seconds: Delay between loading a kernel module and
            verifying it in /proc/modules.
    """

    host: str | None = Field(
        default=None,
        description="Hostname or IP address of the board",
    )
    port: int = Field(
        default=18726,
        ge=1,
        le=65535,
        description="TCP port of the agent",
    )
    timeout_seconds: float | None = Field(
        default=30.0,
        description="Socket read timeout in seconds (null blocks indefinitely)",
    )
    expected_version: tuple[int, int, int] = Field(
        default=(15, 1, 0),
        description="Agent protocol version required by this client",
    )
    module_settle_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay after modprobe before checking /proc/modules",
    )

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Reject non-positive timeouts."""
        if v is not None and v <= 0:
            raise ValueError(f"Invalid timeout: {v}. Must be positive or null")
        return v

    @field_validator("expected_version", mode="before")
    @classmethod
    def parse_version(cls, v: Any) -> Any:
        """Accept dotted version strings such as '15.1.0'."""
        if isinstance(v, str):
            return tuple(int(part) for part in v.split("."))
        return v


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Whether to emit JSON log lines.
        log_to_stdout: Whether to log to stdout instead of stderr.
    """

    level: str = Field(
        default="warning",
        description="Log level: debug, info, warn, error",
    )
    json_format: bool = Field(
        default=True,
        description="Emit JSON-formatted log lines",
    )
    log_to_stdout: bool = Field(
        default=False,
        description="Log to stdout instead of stderr",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        agent: Agent connection settings.
        logging: Logging configuration.
    """

    agent: AgentConfig = Field(
        default_factory=AgentConfig,
        description="Agent connection settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (None, bool, int, float, list, or string).
    """
    if value.lower() in ("null", "none"):
        return None
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    - Nested keys use a double underscore separator
    - Example: RASPI_IO_AGENT__HOST=192.168.0.10

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the parser for the configuration-related command-line flags."""
    parser = argparse.ArgumentParser(
        description="Control Raspberry Pi peripherals through the raspi-io agent",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        add_help=False,
    )
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument("--host", type=str, help="Board hostname or IP address")
    parser.add_argument("--port", type=int, help="Agent TCP port")
    parser.add_argument("--timeout", type=float, help="Socket read timeout in seconds")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    return parser


def _cli_overrides(parsed: argparse.Namespace) -> dict[str, Any]:
    """Convert parsed command-line flags into a configuration dictionary."""
    result: dict[str, Any] = {}

    if getattr(parsed, "config", None):
        result["_config_path"] = parsed.config

    agent: dict[str, Any] = {}
    if getattr(parsed, "host", None):
        agent["host"] = parsed.host
    if getattr(parsed, "port", None) is not None:
        agent["port"] = parsed.port
    if getattr(parsed, "timeout", None) is not None:
        agent["timeout_seconds"] = parsed.timeout
    if agent:
        result["agent"] = agent

    if getattr(parsed, "log_level", None):
        result["logging"] = {"level": parsed.log_level}

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse configuration flags from the command line.

    Unknown arguments (sub-commands and their operands) are ignored here.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parsed, _ = build_arg_parser().parse_known_args(args)
    return _cli_overrides(parsed)


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
    cli_namespace: argparse.Namespace | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.
        cli_namespace: Flags already parsed by a parser built on
            build_arg_parser(). Takes the place of cli_args when given.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=["--host", "raspberrypi.local"])
        >>> config.agent.port
        18726
    """
    config_dict: dict[str, Any] = {}

    if cli_namespace is not None:
        cli_config = _cli_overrides(cli_namespace)
    else:
        cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        else:
            default_path = DEFAULT_CONFIG_PATH.expanduser()
            if default_path.exists():
                config_path = default_path
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
