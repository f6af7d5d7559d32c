"""Configuration loader for browserkit."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from . import constants

DEFAULT_ENABLED_CHANNELS = ["clipboard", "geolocation"]


@dataclass(slots=True)
class ServerConfig:
    host: str = constants.DEFAULT_SERVER_HOST
    port: int = constants.DEFAULT_SERVER_PORT
    heartbeat_seconds: float = 30.0


@dataclass(slots=True)
class ChannelConfig:
    clipboard_script: str = constants.DEFAULT_CLIPBOARD_SCRIPT
    geolocation_script: str = constants.DEFAULT_GEOLOCATION_SCRIPT
    enabled: List[str] = field(default_factory=lambda: list(DEFAULT_ENABLED_CHANNELS))


@dataclass(slots=True)
class RequestConfig:
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class DedupConfig:
    ttl_seconds: float = 300.0
    max_entries: int = 1000
    cleanup_interval: int = 100


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class BrowserKitConfig:
    server: ServerConfig
    channels: ChannelConfig
    requests: RequestConfig
    dedup: DedupConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path

    def script_for(self, kind: str) -> str:
        if kind == "clipboard":
            return self.channels.clipboard_script
        if kind == "geolocation":
            return self.channels.geolocation_script
        raise KeyError(kind)


def _parse_list(value: str, *, default: Iterable[str]) -> List[str]:
    if not value:
        return list(default)
    return [item.strip().lower() for item in value.split(",") if item.strip()]


def _get_float(parser: ConfigParser, section: str, option: str, default: float) -> float:
    try:
        return parser.getfloat(section, option, fallback=default)
    except ValueError:
        return default


def _get_int(parser: ConfigParser, section: str, option: str, default: int) -> int:
    try:
        return parser.getint(section, option, fallback=default)
    except ValueError:
        return default


def load_config(path: Optional[Path] = None) -> BrowserKitConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "server": {
                "host": constants.DEFAULT_SERVER_HOST,
                "port": str(constants.DEFAULT_SERVER_PORT),
                "heartbeat_seconds": "30",
            },
            "channels": {
                "clipboard_script": constants.DEFAULT_CLIPBOARD_SCRIPT,
                "geolocation_script": constants.DEFAULT_GEOLOCATION_SCRIPT,
                "enabled": ",".join(DEFAULT_ENABLED_CHANNELS),
            },
            "requests": {
                "timeout_seconds": "30",
            },
            "dedup": {
                "ttl_seconds": "300",
                "max_entries": "1000",
                "cleanup_interval": "100",
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    server_defaults = ServerConfig()
    server = ServerConfig(
        host=parser.get("server", "host", fallback=server_defaults.host).strip()
        or server_defaults.host,
        port=max(0, _get_int(parser, "server", "port", server_defaults.port)),
        heartbeat_seconds=max(
            0.0,
            _get_float(
                parser, "server", "heartbeat_seconds", server_defaults.heartbeat_seconds
            ),
        ),
    )

    channels = ChannelConfig(
        clipboard_script=parser.get("channels", "clipboard_script"),
        geolocation_script=parser.get("channels", "geolocation_script"),
        enabled=_parse_list(
            parser.get("channels", "enabled", fallback=""),
            default=DEFAULT_ENABLED_CHANNELS,
        ),
    )

    requests = RequestConfig(
        timeout_seconds=max(
            0.1,
            _get_float(
                parser, "requests", "timeout_seconds", RequestConfig().timeout_seconds
            ),
        ),
    )

    dedup_defaults = DedupConfig()
    dedup = DedupConfig(
        ttl_seconds=max(
            0.0,
            _get_float(parser, "dedup", "ttl_seconds", dedup_defaults.ttl_seconds),
        ),
        max_entries=max(
            1, _get_int(parser, "dedup", "max_entries", dedup_defaults.max_entries)
        ),
        cleanup_interval=max(
            1,
            _get_int(
                parser, "dedup", "cleanup_interval", dedup_defaults.cleanup_interval
            ),
        ),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return BrowserKitConfig(
        server=server,
        channels=channels,
        requests=requests,
        dedup=dedup,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )
