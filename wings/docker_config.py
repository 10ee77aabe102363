"""Docker related settings of the daemon configuration."""

from __future__ import annotations

import base64
import json
from dataclasses import MISSING, Field, dataclass, field, fields
from typing import Any, Callable, Mapping, TypeVar

_S = TypeVar("_S", bound="_Section")


def _key(name: str, **extra: Any) -> dict[str, Any]:
    return {"key": name, **extra}


def _section_type(f: Field) -> type[_Section] | None:
    """Return the section class a field holds, judged by its default value."""
    if f.default_factory is MISSING:  # type: ignore[misc]
        return None
    sample = f.default_factory()  # type: ignore[misc]
    if isinstance(sample, _Section):
        return type(sample)
    return None


class _Section:
    """Mixin that loads and dumps a dataclass from plain mappings.

    Keys missing from the mapping keep their defaults, mirroring how values in a
    configuration file take priority over the built-in defaults.
    """

    @classmethod
    def from_dict(cls: type[_S], data: Mapping[str, Any] | None) -> _S:
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise TypeError(f"expected a mapping for {cls.__name__}, got {type(data).__name__}")
        kwargs: dict[str, Any] = {}
        for f in fields(cls):  # type: ignore[arg-type]
            key = f.metadata.get("key", f.name)
            if key not in data:
                continue
            value = data[key]
            loader: Callable[[Any], Any] | None = f.metadata.get("load")
            if loader is not None:
                value = loader(value)
            else:
                section = _section_type(f)
                if section is not None:
                    value = section.from_dict(value)
            kwargs[f.name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            key = f.metadata.get("key", f.name)
            value = getattr(self, f.name)
            dumper: Callable[[Any], Any] | None = f.metadata.get("dump")
            if dumper is not None:
                value = dumper(value)
            elif isinstance(value, _Section):
                value = value.to_dict()
            elif isinstance(value, (list, dict)):
                value = type(value)(value)
            out[key] = value
        return out


@dataclass
class NetworkInterface(_Section):
    """A subnet and gateway pair for one IP family."""

    subnet: str = ""
    gateway: str = ""


def _default_v4() -> NetworkInterface:
    return NetworkInterface(subnet="172.18.0.0/16", gateway="172.18.0.1")


def _default_v6() -> NetworkInterface:
    return NetworkInterface(subnet="fdba:17c8:6c94::/64", gateway="fdba:17c8:6c94::1011")


@dataclass
class DockerNetworkInterfaces(_Section):
    """IPv4 and IPv6 settings for the daemon's network."""

    v4: NetworkInterface = field(default_factory=_default_v4)
    v6: NetworkInterface = field(default_factory=_default_v6)


@dataclass
class DockerNetworkConfiguration(_Section):
    """The network that containers run by the daemon are attached to."""

    interface: str = "172.18.0.1"
    dns: list[str] = field(default_factory=lambda: ["1.1.1.1", "1.0.0.1"])
    name: str = "pterodactyl_nw"
    ispn: bool = False
    driver: str = "bridge"
    mode: str = field(default="pterodactyl_nw", metadata=_key("network_mode"))
    is_internal: bool = False
    enable_icc: bool = True
    network_mtu: int = 1500
    interfaces: DockerNetworkInterfaces = field(default_factory=DockerNetworkInterfaces)


@dataclass
class InstallerLimits(_Section):
    """Minimum resources given to installer containers."""

    memory: int = 1024
    cpu: int = 100


def _default_log_options() -> dict[str, str]:
    return {"max-size": "5m", "max-file": "1", "compress": "false", "mode": "non-blocking"}


def _load_log_options(value: Mapping[str, Any] | None) -> dict[str, str]:
    # Values read from the file are merged into the defaults rather than replacing them.
    return {**_default_log_options(), **dict(value or {})}


@dataclass
class ContainerLogConfig(_Section):
    """The logging driver used for containers."""

    type: str = "local"
    config: dict[str, str] = field(
        default_factory=_default_log_options, metadata=_key("config", load=_load_log_options)
    )


@dataclass
class RegistryConfiguration(_Section):
    """Credentials for a Docker registry."""

    username: str = ""
    password: str = ""

    def base64(self) -> str:
        """Return the credentials as URL-safe base64 encoded JSON."""
        auth = {}
        if self.username:
            auth["username"] = self.username
        if self.password:
            auth["password"] = self.password
        raw = json.dumps(auth, separators=(",", ":")).encode()
        return base64.urlsafe_b64encode(raw).decode()


def _load_multipliers(value: Mapping[Any, Any] | None) -> dict[int, float]:
    return {int(k): float(v) for k, v in (value or {}).items()}


@dataclass
class Overhead(_Section):
    """Memory overhead given to containers on top of their configured limit."""

    override: bool = False
    default_multiplier: float = 1.05
    multipliers: dict[int, float] = field(
        default_factory=dict, metadata=_key("multipliers", load=_load_multipliers)
    )

    def get_multiplier(self, memory_limit: int) -> float:
        """Return the multiplier to apply to a memory limit given in megabytes."""
        if not self.override:
            if memory_limit <= 2048:
                return 1.15
            if memory_limit <= 4096:
                return 1.10
            return 1.05
        for limit in sorted(self.multipliers):
            if memory_limit <= limit:
                return self.multipliers[limit]
        return self.default_multiplier


def _load_registries(value: Mapping[str, Any] | None) -> dict[str, RegistryConfiguration]:
    return {name: RegistryConfiguration.from_dict(cfg) for name, cfg in (value or {}).items()}


def _dump_registries(value: Mapping[str, RegistryConfiguration]) -> dict[str, Any]:
    return {name: cfg.to_dict() for name, cfg in value.items()}


@dataclass
class DockerConfiguration(_Section):
    """Settings used when talking to Docker about containers and networks."""

    network: DockerNetworkConfiguration = field(default_factory=DockerNetworkConfiguration)
    domainname: str = ""
    registries: dict[str, RegistryConfiguration] = field(
        default_factory=dict,
        metadata=_key("registries", load=_load_registries, dump=_dump_registries),
    )
    tmpfs_size: int = 100
    container_pid_limit: int = 512
    installer_limits: InstallerLimits = field(default_factory=InstallerLimits)
    overhead: Overhead = field(default_factory=Overhead)
    use_performant_inspect: bool = True
    userns_mode: str = ""
    log_config: ContainerLogConfig = field(default_factory=ContainerLogConfig)

    def container_log_config(self) -> ContainerLogConfig:
        """Return the log configuration to hand to new containers."""
        if not self.log_config.type:
            return ContainerLogConfig(type="", config={})
        return ContainerLogConfig(type=self.log_config.type, config=dict(self.log_config.config))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> DockerConfiguration:
        return super().from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict()