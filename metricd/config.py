"""
metricd - Configuration

Loads agent and server settings from, in increasing priority:
defaults, a YAML/JSON config file, environment variables (and .env),
command-line flags.
"""

import argparse
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import structlog
import yaml
from pydantic import Field
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

S = TypeVar("S", bound=BaseSettings)

CONFIG_ENV = "CONFIG"


class AgentSettings(BaseSettings):
    """Agent settings loaded from environment."""

    address: str = Field(default="localhost:8080", alias="ADDRESS")
    poll_interval: int = Field(default=2, alias="POLL_INTERVAL", ge=1)
    report_interval: int = Field(default=10, alias="REPORT_INTERVAL", ge=1)
    worker_count: int = Field(default=1, alias="RATE_LIMIT", ge=1)
    key: str = Field(default="", alias="KEY")
    log_level: str = Field(default="info", alias="LOG_LEVEL")

    @property
    def server_url(self) -> str:
        """Base URL of the collector server."""
        if "://" in self.address:
            return self.address.rstrip("/")
        return f"http://{self.address}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True
        extra = "ignore"


class ServerSettings(BaseSettings):
    """Server settings loaded from environment."""

    address: str = Field(default="localhost:8080", alias="ADDRESS")
    store_interval: int = Field(default=300, alias="STORE_INTERVAL", ge=0)
    store_file: str = Field(default="/tmp/metrics-db.json", alias="FILE_STORAGE_PATH")
    restore: bool = Field(default=True, alias="RESTORE")
    database_dsn: str = Field(default="", alias="DATABASE_DSN")
    key: str = Field(default="", alias="KEY")
    log_level: str = Field(default="info", alias="LOG_LEVEL")

    @property
    def host(self) -> str:
        return split_address(self.address)[0]

    @property
    def port(self) -> int:
        return split_address(self.address)[1]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True
        extra = "ignore"


def split_address(address: str) -> Tuple[str, int]:
    """Split "host:port"; an empty host means all interfaces."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"Address must be host:port, got {address!r}")
    return host or "0.0.0.0", int(port)


def parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "t", "true", "yes", "on"):
        return True
    if value in ("0", "f", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {raw!r}")


def load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """Read settings from a YAML or JSON file; a missing path yields {}."""
    if not path:
        return {}

    config_path = Path(path)
    if not config_path.exists():
        logger.warning("Config file not found, using defaults", path=path)
        return {}

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    logger.info("Configuration loaded", path=path)
    return data


def _agent_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="metricd agent")
    parser.add_argument("--config", "-c", default=None, help="Path to configuration file")
    parser.add_argument("-a", dest="address", default=None, help="Server address host:port")
    parser.add_argument("-p", dest="poll_interval", type=int, default=None, help="Poll interval in seconds")
    parser.add_argument("-r", dest="report_interval", type=int, default=None, help="Report interval in seconds")
    parser.add_argument("-l", dest="worker_count", type=int, default=None, help="Number of delivery workers")
    parser.add_argument("-k", dest="key", default=None, help="Signing key")
    return parser


def _server_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="metricd server")
    parser.add_argument("--config", "-c", default=None, help="Path to configuration file")
    parser.add_argument("-a", dest="address", default=None, help="Listen address host:port")
    parser.add_argument("-i", dest="store_interval", type=int, default=None, help="Backup interval in seconds, 0 for sync")
    parser.add_argument("-f", dest="store_file", default=None, help="Backup file path")
    parser.add_argument("-r", dest="restore", type=parse_bool, default=None, help="Restore from the backup file on start")
    parser.add_argument("-d", dest="database_dsn", default=None, help="Database DSN")
    parser.add_argument("-k", dest="key", default=None, help="Signing key")
    return parser


def _merge(
    settings_cls: Type[S],
    parser: argparse.ArgumentParser,
    argv: Optional[List[str]],
) -> S:
    args = vars(parser.parse_args(argv))
    config_path = args.pop("config") or os.environ.get(CONFIG_ENV)
    fields = settings_cls.model_fields

    merged: Dict[str, Any] = {
        name: value
        for name, value in load_config_file(config_path).items()
        if name in fields
    }

    # Only what the environment actually set; defaults must not mask the file
    from_env = settings_cls()
    for name in from_env.model_fields_set:
        merged[name] = getattr(from_env, name)

    for name, value in args.items():
        if value is not None:
            merged[name] = value

    # Keyed by alias, the same key the environment source produces
    return settings_cls(**{fields[name].alias or name: value for name, value in merged.items()})


def load_agent_settings(argv: Optional[List[str]] = None) -> AgentSettings:
    return _merge(AgentSettings, _agent_parser(), argv)


def load_server_settings(argv: Optional[List[str]] = None) -> ServerSettings:
    return _merge(ServerSettings, _server_parser(), argv)
