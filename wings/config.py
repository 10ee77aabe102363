"""The daemon configuration and the process-wide configuration singleton."""

from __future__ import annotations

import copy
import os
import threading
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Mapping

import yaml

from wings.docker_config import DockerConfiguration, _key, _Section

DEFAULT_LOCATION = "/etc/pterodactyl/config.yml"


def _load_list(value: Any) -> list[Any]:
    return list(value or [])


def _list_field() -> Any:
    return field(default_factory=list, metadata={"load": _load_list})


@dataclass
class SftpConfiguration(_Section):
    """The internal SFTP server."""

    address: str = field(default="0.0.0.0", metadata=_key("bind_address"))
    port: int = field(default=2022, metadata=_key("bind_port"))
    read_only: bool = False


@dataclass
class ApiSslConfiguration(_Section):
    """TLS settings for the internal webserver."""

    enabled: bool = False
    certificate_file: str = field(default="", metadata=_key("cert"))
    key_file: str = field(default="", metadata=_key("key"))


@dataclass
class ApiConfiguration(_Section):
    """The internal API exposed by the webserver."""

    host: str = "0.0.0.0"
    port: int = 8080
    ssl: ApiSslConfiguration = field(default_factory=ApiSslConfiguration)
    disable_remote_download: bool = False
    upload_limit: int = 100
    trusted_proxies: list[str] = _list_field()


@dataclass
class RemoteQueryConfiguration(_Section):
    """Settings for requests made to the Panel."""

    timeout: int = 30
    boot_servers_per_page: int = 50


@dataclass
class RootlessConfiguration(_Section):
    """Settings for rootless container daemons."""

    enabled: bool = False
    container_uid: int = 0
    container_gid: int = 0


@dataclass
class SystemUserConfiguration(_Section):
    """The system user owning server files and running containers."""

    rootless: RootlessConfiguration = field(default_factory=RootlessConfiguration)
    uid: int = 0
    gid: int = 0


@dataclass
class CrashDetection(_Section):
    """How crashed server processes are detected and handled."""

    enabled: bool = True
    detect_clean_exit_as_crash: bool = True
    timeout: int = 60


@dataclass
class Backups(_Section):
    """Settings for locally generated backups."""

    write_limit: int = 0
    compression_level: str = "best_speed"


@dataclass
class Transfers(_Section):
    """Settings for server transfers."""

    download_limit: int = 0


@dataclass
class SystemConfiguration(_Section):
    """Basic system settings: directories, the system user and intervals."""

    root_directory: str = "/var/lib/pterodactyl"
    log_directory: str = "/var/log/pterodactyl"
    data: str = "/var/lib/pterodactyl/volumes"
    archive_directory: str = "/var/lib/pterodactyl/archives"
    backup_directory: str = "/var/lib/pterodactyl/backups"
    tmp_directory: str = "/tmp/pterodactyl"
    username: str = "pterodactyl"
    timezone: str = ""
    user: SystemUserConfiguration = field(default_factory=SystemUserConfiguration)
    disk_check_interval: int = 150
    activity_send_interval: int = 60
    activity_send_count: int = 100
    check_permissions_on_boot: bool = True
    enable_log_rotate: bool = True
    websocket_log_count: int = 150
    sftp: SftpConfiguration = field(default_factory=SftpConfiguration)
    crash_detection: CrashDetection = field(default_factory=CrashDetection)
    backups: Backups = field(default_factory=Backups)
    transfers: Transfers = field(default_factory=Transfers)

    @property
    def states_path(self) -> str:
        """Location of the JSON file tracking server states."""
        return os.path.join(self.root_directory, "states.json")


@dataclass
class ConsoleThrottles(_Section):
    """Throttling of console output from server processes."""

    enabled: bool = True
    lines: int = 2000
    period: int = field(default=100, metadata=_key("line_reset_interval"))


def _deep_merge(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in overlay.items():
        current = out.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            out[key] = _deep_merge(current, value)
        else:
            out[key] = value
    return out


@dataclass
class Configuration(_Section):
    """The complete daemon configuration."""

    debug: bool = False
    app_name: str = "Pterodactyl"
    uuid: str = ""
    authentication_token_id: str = field(default="", metadata=_key("token_id"))
    authentication_token: str = field(default="", metadata=_key("token"))
    api: ApiConfiguration = field(default_factory=ApiConfiguration)
    system: SystemConfiguration = field(default_factory=SystemConfiguration)
    docker: DockerConfiguration = field(default_factory=DockerConfiguration)
    throttles: ConsoleThrottles = field(default_factory=ConsoleThrottles)
    panel_location: str = field(default="", metadata=_key("remote"))
    remote_query: RemoteQueryConfiguration = field(default_factory=RemoteQueryConfiguration)
    allowed_mounts: list[str] = _list_field()
    allowed_origins: list[str] = _list_field()
    allow_cors_private_network: bool = False

    def __post_init__(self) -> None:
        self._path = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, path: str = "") -> Configuration:
        """Build a configuration from a mapping, keeping defaults for missing keys."""
        config = super().from_dict(data)
        config._path = path
        return config

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict()

    def merge(self, data: Mapping[str, Any] | None) -> None:
        """Overlay values from a mapping onto this configuration in place."""
        if data is None:
            return
        if not isinstance(data, Mapping):
            raise TypeError(f"expected a mapping for configuration, got {type(data).__name__}")
        merged = type(self).from_dict(_deep_merge(self.to_dict(), data), self._path)
        for f in fields(self):
            setattr(self, f.name, getattr(merged, f.name))

    @property
    def path(self) -> str:
        """The file this configuration was created for."""
        return self._path


_lock = threading.RLock()
_write_lock = threading.Lock()
_config: Configuration | None = None
_jwt_secret: bytes | None = None
_debug_via_flag = False


def new_at_path(path: str) -> Configuration:
    """Return a configuration with default values bound to a file path.

    The global configuration is left untouched.
    """
    return Configuration.from_dict({}, path)


def _require() -> Configuration:
    if _config is None:
        raise RuntimeError("config: configuration has not been loaded")
    return _config


def set_config(config: Configuration) -> None:
    """Replace the global configuration."""
    global _config, _jwt_secret
    with _lock:
        if _config is None or _config.authentication_token != config.authentication_token:
            _jwt_secret = config.authentication_token.encode()
        _config = config


def set_debug_via_flag(debug: bool) -> None:
    """Record that debug mode comes from a command line flag, not the file."""
    global _debug_via_flag
    with _lock:
        _require().debug = debug
        _debug_via_flag = debug


def get_config() -> Configuration:
    """Return a copy of the global configuration; changes to it are not stored."""
    with _lock:
        return copy.deepcopy(_require())


def update_config(callback: Callable[[Configuration], Any]) -> None:
    """Modify the global configuration in place under the configuration lock."""
    with _lock:
        callback(_require())


def jwt_secret() -> bytes:
    """Return the HMAC key used to sign and verify tokens."""
    with _lock:
        if _jwt_secret is None:
            raise RuntimeError("config: configuration has not been loaded")
        return _jwt_secret


def write_to_disk(config: Configuration) -> None:
    """Write a configuration to its file as YAML, one writer at a time."""
    with _write_lock:
        snapshot = copy.deepcopy(config)
        if _debug_via_flag:
            snapshot.debug = False
        if not config.path:
            raise ValueError("cannot write configuration, no path defined in struct")
        content = yaml.safe_dump(snapshot.to_dict(), sort_keys=False).encode()
        fd = os.open(config.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)


def from_file(path: str) -> None:
    """Read a configuration file and store it as the global configuration."""
    with open(path, "rb") as handle:
        raw = handle.read()
    config = new_at_path(path)
    config.merge(yaml.safe_load(raw))
    set_config(config)