"""Configuration loading and logging setup for mdnswatch."""

from .config_parser import (
    AppConfig,
    ConfigError,
    LoggingConfig,
    MonitorConfig,
    apply_cli_overrides,
    load_config,
    parse_config_file,
    resolve_filter_host,
    resolve_interface,
)
from .logging_config import init_logging

__all__ = [
    "AppConfig",
    "ConfigError",
    "LoggingConfig",
    "MonitorConfig",
    "apply_cli_overrides",
    "init_logging",
    "load_config",
    "parse_config_file",
    "resolve_filter_host",
    "resolve_interface",
]
