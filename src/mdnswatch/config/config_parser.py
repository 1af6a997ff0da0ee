"""Configuration parsing and normalization helpers for mdnswatch.

Brief:
  Reads the optional YAML config file, validates it into pydantic models,
  layers command-line overrides on top, and resolves the names it contains
  (interface names, filter hostnames) into indexes and addresses.

Inputs:
  - YAML config paths and parsed argparse namespaces

Outputs:
  - AppConfig instances, resolved interface indexes and filter addresses
"""

from __future__ import annotations

import ipaddress
import socket
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..constants import REPORT_TOP_HOSTS, REPORT_TOP_SERVICES
from ..filters import IPAddress
from .logging_config import LEVELS


class ConfigError(ValueError):
    """
    Brief: Invalid configuration file, option value or unresolvable name.

    Inputs:
      - message: human-readable description

    Outputs:
      - ConfigError instance
    """


class LoggingConfig(BaseModel):
    """Brief: The ``logging`` section; handed to init_logging as a mapping."""

    level: str = Field(default="info")
    stderr: bool = Field(default=True)
    file: Optional[str] = None
    syslog: Union[bool, Dict[str, Any]] = Field(default=False)

    class Config:
        extra = "forbid"

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = str(v).strip().lower()
        if level not in LEVELS:
            raise ValueError(f"unknown log level {v!r}")
        return level


class MonitorConfig(BaseModel):
    """Brief: Typed ``monitor`` section.

    Inputs:
      - interface: interface name or index to restrict capture to (None = all).
      - ipv6: listen for and track IPv6 by default.
      - filters: source hosts (addresses or names) to watch.
      - active_queries: send PTR/HINFO follow-up queries.
      - top_services / top_hosts: rows in the summary tables.
      - max_hosts: optional per-family host registry capacity.

    Outputs:
      - MonitorConfig instance with normalized types.
    """

    interface: Optional[Union[int, str]] = None
    ipv6: bool = False
    filters: List[str] = Field(default_factory=list)
    active_queries: bool = True
    top_services: int = Field(default=REPORT_TOP_SERVICES, ge=0)
    top_hosts: int = Field(default=REPORT_TOP_HOSTS, ge=0)
    max_hosts: Optional[int] = Field(default=None, ge=1)

    class Config:
        extra = "forbid"

    @field_validator("filters", mode="before")
    @classmethod
    def _filters_as_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v]
        return v


class AppConfig(BaseModel):
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)

    class Config:
        extra = "forbid"


def _format_validation_error(err: ValidationError, config_path: Optional[str]) -> str:
    where = f" in {config_path}" if config_path else ""
    lines = [f"Invalid configuration{where}:"]
    for item in err.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        lines.append(f"  - {loc}: {item.get('msg')}")
    return "\n".join(lines)


def load_config(data: Optional[Dict[str, Any]], *, config_path: Optional[str] = None) -> AppConfig:
    """Brief: Validate an already-parsed config mapping.

    Inputs:
      - data: mapping from YAML (None means all defaults)
      - config_path: used only in error messages

    Outputs:
      - AppConfig

    Raises:
      - ConfigError: when the mapping does not validate.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e, config_path)) from e


def parse_config_file(config_path: str) -> AppConfig:
    """Brief: Read and validate a YAML config file.

    Inputs:
      - config_path: path to the YAML file

    Outputs:
      - AppConfig

    Raises:
      - ConfigError: unreadable file, YAML syntax error or invalid contents.
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    return load_config(data, config_path=config_path)


def apply_cli_overrides(cfg: AppConfig, args: Any) -> AppConfig:
    """Brief: Return a copy of cfg with command-line values layered on top.

    Inputs:
      - cfg: AppConfig from the file (or defaults)
      - args: argparse namespace with interface, ipv6, hosts, no_active,
        log_level attributes (missing or None attributes are ignored)

    Outputs:
      - new AppConfig

    Raises:
      - ConfigError: an override fails validation.
    """
    data = cfg.model_dump()
    monitor: Dict[str, Any] = data["monitor"]
    if getattr(args, "interface", None) is not None:
        monitor["interface"] = args.interface
    if getattr(args, "ipv6", False):
        monitor["ipv6"] = True
    hosts = getattr(args, "hosts", None)
    if hosts:
        monitor["filters"] = list(hosts)
    if getattr(args, "no_active", False):
        monitor["active_queries"] = False

    if getattr(args, "log_level", None):
        data["logging"]["level"] = args.log_level

    return load_config(data)


def resolve_interface(value: Optional[Union[int, str]]) -> int:
    """Brief: Interface name or index to an index; 0 means all interfaces.

    Inputs:
      - value: None, an int, a numeric string or an interface name

    Outputs:
      - int interface index

    Raises:
      - ConfigError: unknown interface name.

    Example:
      >>> resolve_interface(None)
      0
      >>> resolve_interface("3")
      3
    """
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    try:
        return socket.if_nametoindex(text)
    except OSError as e:
        raise ConfigError(f"Unknown interface {text!r}") from e


def resolve_filter_host(host: str, family: int = 4) -> IPAddress:
    """Brief: Address literal or hostname to an address of the given family.

    Inputs:
      - host: "192.168.1.10", "fe80::1" or a resolvable name
      - family: 4 or 6, used only for name lookups

    Outputs:
      - ipaddress.IPv4Address or IPv6Address

    Raises:
      - ConfigError: the name does not resolve.
    """
    try:
        return ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        pass
    af = socket.AF_INET6 if family == 6 else socket.AF_INET
    try:
        infos = socket.getaddrinfo(host, None, af, socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ConfigError(f"Cannot resolve filter host {host!r}: {e}") from e
    if not infos:
        raise ConfigError(f"Cannot resolve filter host {host!r}")
    address = str(infos[0][4][0]).split("%", 1)[0]
    return ipaddress.ip_address(address)
