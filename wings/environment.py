"""Settings, resource limits and the common interface of server process environments."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from wings.config import get_config
from wings.docker_config import _key, _Section
from wings.events import Bus

log = logging.getLogger(__name__)

STATE_CHANGE_EVENT = "state change"
RESOURCE_EVENT = "resources"
DOCKER_IMAGE_PULL_STARTED = "docker image pull started"
DOCKER_IMAGE_PULL_STATUS = "docker image pull status"
DOCKER_IMAGE_PULL_COMPLETED = "docker image pull completed"

PROCESS_OFFLINE_STATE = "offline"
PROCESS_STARTING_STATE = "starting"
PROCESS_RUNNING_STATE = "running"
PROCESS_STOPPING_STATE = "stopping"

PROCESS_STATES = frozenset(
    {PROCESS_OFFLINE_STATE, PROCESS_STARTING_STATE, PROCESS_RUNNING_STATE, PROCESS_STOPPING_STATE}
)

_LOCALHOST = "127.0.0.1"


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


@dataclass(frozen=True)
class PortBinding:
    """A host address and port that a container port is published on."""

    host_ip: str
    host_port: str


@dataclass
class DefaultMapping(_Section):
    """The allocation used for {SERVER_IP} and {SERVER_PORT}."""

    ip: str = ""
    port: int = 0


def _load_mappings(value: Mapping[str, Any] | None) -> dict[str, list[int]]:
    return {ip: [int(p) for p in (ports or [])] for ip, ports in (value or {}).items()}


@dataclass
class Allocations(_Section):
    """The IP addresses and ports assigned to a server."""

    force_outgoing_ip: bool = False
    default_mapping: DefaultMapping = field(default_factory=DefaultMapping, metadata=_key("default"))
    mappings: dict[str, list[int]] = field(
        default_factory=dict, metadata=_key("mappings", load=_load_mappings)
    )

    def bindings(self) -> dict[str, list[PortBinding]]:
        """Return the mappings as Docker port bindings, one tcp and one udp key per port.

        Ports outside 1-65535 are skipped.
        """
        out: dict[str, list[PortBinding]] = {}
        for ip, ports in self.mappings.items():
            for port in ports:
                if port < 1 or port > 65535:
                    continue
                binding = PortBinding(host_ip=ip, host_port=str(port))
                for proto in ("tcp", "udp"):
                    out.setdefault(f"{port}/{proto}", []).append(binding)
        return out

    def docker_bindings(self) -> dict[str, list[PortBinding]]:
        """Return the bindings with 127.0.0.1 mapped to the daemon's network interface.

        When the network uses ISPN, local bindings are dropped instead.
        """
        network = get_config().docker.network
        out: dict[str, list[PortBinding]] = {}
        for port, binds in self.bindings().items():
            converted = []
            for bind in binds:
                if bind.host_ip != _LOCALHOST:
                    converted.append(bind)
                elif not network.ispn:
                    converted.append(PortBinding(host_ip=network.interface, host_port=bind.host_port))
            out[port] = converted
        return out

    def exposed(self) -> dict[str, dict[str, Any]]:
        """Return the exposed ports in Docker's form: each port key maps to an empty object."""
        return {port: {} for port in self.docker_bindings()}


@dataclass
class Mount:
    """A directory mounted into the server's environment."""

    target: str = ""
    source: str = ""
    read_only: bool = False
    default: bool = False


@dataclass
class Limits(_Section):
    """Resource limits applied to a server's container."""

    memory_limit: int = 0
    swap: int = 0
    io_weight: int = 0
    cpu_limit: int = 0
    disk_space: int = 0
    threads: str = ""
    oom_disabled: bool = False

    def converted_cpu_limit(self) -> int:
        """Return the CPU limit in Docker's units, or -1 for no limit."""
        if self.cpu_limit == 0:
            return -1
        return self.cpu_limit * 1000

    def memory_overhead_multiplier(self) -> float:
        """Return the multiplier applied on top of the memory limit."""
        return get_config().docker.overhead.get_multiplier(self.memory_limit)

    def bounded_memory_limit(self) -> int:
        """Return the hard memory limit in bytes, overhead included."""
        return _round_half_away(self.memory_limit * self.memory_overhead_multiplier() * 1_000_000)

    def converted_swap(self) -> int:
        """Return memory plus swap in bytes, or -1 for unlimited swap."""
        if self.swap < 0:
            return -1
        return self.swap * 1_000_000 + self.bounded_memory_limit()

    def process_limit(self) -> int:
        """Return the process limit, which is set for the whole node."""
        return get_config().docker.container_pid_limit

    def as_container_resources(self) -> dict[str, Any]:
        """Return the limits as a Docker resources object."""
        resources: dict[str, Any] = {
            "Memory": self.bounded_memory_limit(),
            "MemoryReservation": self.memory_limit * 1_000_000,
            "MemorySwap": self.converted_swap(),
            "BlkioWeight": self.io_weight,
            "OomKillDisable": self.oom_disabled,
            "PidsLimit": self.process_limit(),
        }
        # Sending CPU fields without a limit breaks some Java processes.
        if self.cpu_limit > 0:
            resources["CpuQuota"] = self.cpu_limit * 1_000
            resources["CpuPeriod"] = 100_000
            resources["CpuShares"] = 1024
        if self.threads:
            resources["CpusetCpus"] = self.threads
        return resources


class Variables(dict):
    """Environment variables for a server as received from the Panel."""

    def as_string(self, key: str) -> str:
        """Return a variable as a string; missing or unsupported values give ""."""
        if key not in self:
            return ""
        value = self[key]
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            return f"{value:f}"
        if isinstance(value, str):
            return value
        log.warning('failed to marshal environment variable "%s" of type %r into string', key, value)
        return ""


@dataclass
class Settings:
    """Everything an environment needs to know about a server's resources."""

    mounts: list[Mount] = field(default_factory=list)
    allocations: Allocations = field(default_factory=Allocations)
    limits: Limits = field(default_factory=Limits)
    labels: dict[str, str] = field(default_factory=dict)


class EnvironmentConfiguration:
    """Thread-safe holder of an environment's settings and environment variables."""

    def __init__(
        self, settings: Settings | None = None, environment_variables: list[str] | None = None
    ) -> None:
        self._lock = threading.RLock()
        self._settings = settings if settings is not None else Settings()
        self._environment_variables = list(environment_variables or [])

    def update_settings(self, settings: Settings) -> None:
        """Replace the settings, so changes reach the environment on the fly."""
        with self._lock:
            self._settings = settings

    def update_environment_variables(self, variables: list[str]) -> None:
        """Replace all environment variables."""
        with self._lock:
            self._environment_variables = list(variables)

    @property
    def limits(self) -> Limits:
        with self._lock:
            return self._settings.limits

    @property
    def allocations(self) -> Allocations:
        with self._lock:
            return self._settings.allocations

    @property
    def mounts(self) -> list[Mount]:
        with self._lock:
            return list(self._settings.mounts)

    @property
    def labels(self) -> dict[str, str]:
        with self._lock:
            return dict(self._settings.labels)

    @property
    def environment_variables(self) -> list[str]:
        with self._lock:
            return list(self._environment_variables)


@dataclass
class NetworkStats(_Section):
    """Bytes received and sent by a container."""

    rx_bytes: int = 0
    tx_bytes: int = 0


@dataclass
class Stats(_Section):
    """Current resource usage of a server instance."""

    memory: int = field(default=0, metadata=_key("memory_bytes"))
    memory_limit: int = field(default=0, metadata=_key("memory_limit_bytes"))
    cpu_absolute: float = 0.0
    network: NetworkStats = field(default_factory=NetworkStats)
    uptime: int = 0

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict()


class ProcessEnvironment(Protocol):
    """What every environment controlling a server process provides."""

    configuration: EnvironmentConfiguration

    def type(self) -> str: ...

    def events(self) -> Bus: ...

    def exists(self) -> bool: ...

    def is_running(self) -> bool: ...

    def in_situ_update(self) -> None: ...

    def on_before_start(self) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def wait_for_stop(self, duration: float, terminate: bool) -> None: ...

    def terminate(self, signal: Any) -> None: ...

    def destroy(self) -> None: ...

    def exit_state(self) -> tuple[int, bool]: ...

    def create(self) -> None: ...

    def attach(self) -> None: ...

    def send_command(self, command: str) -> None: ...

    def readlog(self, lines: int) -> list[str]: ...

    def state(self) -> str: ...

    def set_state(self, state: str) -> None: ...

    def uptime(self) -> int: ...