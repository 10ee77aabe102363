"""Resource usage reporting for Docker containers."""

from __future__ import annotations

import logging
import math
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from wings.environment import (
    PROCESS_OFFLINE_STATE,
    RESOURCE_EVENT,
    NetworkStats,
    Stats,
)

log = logging.getLogger(__name__)

_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$",
    re.IGNORECASE,
)
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def _parse_time(value: str) -> datetime:
    match = _RFC3339.match(value or "")
    if match is None:
        raise ValueError(f"invalid RFC 3339 timestamp {value!r}")
    base = datetime.strptime(match.group(1), "%Y-%m-%dT%H:%M:%S")
    fraction = (match.group(2) or "")[:6].ljust(6, "0")
    offset = match.group(3)
    if offset.upper() == "Z":
        tz = timezone.utc
    else:
        sign = -1 if offset[0] == "-" else 1
        hours, minutes = int(offset[1:3]), int(offset[4:6])
        tz = timezone(sign * timedelta(hours=hours, minutes=minutes))
    return base.replace(microsecond=int(fraction), tzinfo=tz)


def _optional_time(value: Any) -> datetime | None:
    """Parse a timestamp, returning None for missing, zero or malformed values."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = _parse_time(value)
    except ValueError:
        return None
    return None if parsed == _ZERO_TIME else parsed


def calculate_docker_memory(stats: Mapping[str, Any]) -> int:
    """Return memory use the way the docker CLI reports it: usage minus inactive file cache."""
    usage = int(stats.get("usage") or 0)
    detail = stats.get("stats") or {}
    total_inactive = detail.get("total_inactive_file")
    if total_inactive is not None and total_inactive < usage:
        return usage - int(total_inactive)
    inactive = int(detail.get("inactive_file") or 0)
    if inactive < usage:
        return usage - inactive
    return usage


def calculate_docker_absolute_cpu(
    previous: Mapping[str, Any] | None, current: Mapping[str, Any]
) -> float:
    """Return CPU use relative to the whole host, rounded to three decimals."""
    previous = previous or {}
    prev_usage = previous.get("cpu_usage") or {}
    cur_usage = current.get("cpu_usage") or {}

    cpu_delta = float(cur_usage.get("total_usage") or 0) - float(prev_usage.get("total_usage") or 0)
    system_delta = float(current.get("system_cpu_usage") or 0) - float(
        previous.get("system_cpu_usage") or 0
    )

    cpus = float(current.get("online_cpus") or 0)
    if cpus == 0.0:
        cpus = float(len(cur_usage.get("percpu_usage") or []))

    percent = 0.0
    if system_delta > 0.0 and cpu_delta > 0.0:
        percent = (cpu_delta / system_delta) * 100.0
        if cpus > 0:
            percent *= cpus

    return math.floor(percent * 1000 + 0.5) / 1000


class StatsMixin:
    """Uptime and resource polling for an environment.

    The host class provides ``id``, ``client``, ``state()`` and ``events()``.
    """

    def uptime(self) -> int:
        """Return milliseconds since the container started, or 0 if it is not running."""
        inspected = self.client.container_inspect(self.id)
        state = inspected.get("State") or {}
        if not state.get("Running"):
            return 0
        try:
            started = _parse_time(state.get("StartedAt", ""))
        except ValueError as exc:
            raise ValueError("environment: failed to parse container start time") from exc
        return int((datetime.now(timezone.utc) - started) / _MILLISECOND)

    def poll_resources(self, stop_event: threading.Event | None = None) -> None:
        """Publish a resource event for every stats sample until the stream ends.

        Polling also ends once the environment is offline or ``stop_event`` is set.
        """
        if self.state() == PROCESS_OFFLINE_STATE:
            raise RuntimeError("cannot enable resource polling on a stopped server")

        fields = {"container_id": self.id}
        log.info("starting resource polling for container", extra={"fields": fields})
        stream = self.client.container_stats(self.id)
        try:
            try:
                uptime = self.uptime()
            except Exception as exc:
                log.warning(
                    "failed to calculate container uptime",
                    extra={"fields": {**fields, "error": exc}},
                )
                uptime = 0

            samples = iter(stream)
            while True:
                if stop_event is not None and stop_event.is_set():
                    return
                try:
                    sample = next(samples)
                except StopIteration:
                    log.debug("end of stats stream, stopping polling...", extra={"fields": fields})
                    return
                except Exception as exc:
                    log.warning(
                        "error while processing Docker stats output for container",
                        extra={"fields": {**fields, "error": exc}},
                    )
                    return

                if self.state() == PROCESS_OFFLINE_STATE:
                    log.debug(
                        "process in offline state while resource polling is still active; stopping poll",
                        extra={"fields": fields},
                    )
                    return

                read = _optional_time(sample.get("read"))
                preread = _optional_time(sample.get("preread"))
                if read is not None and preread is not None:
                    uptime += int((read - preread) / _MILLISECOND)

                memory = sample.get("memory_stats") or {}
                network = NetworkStats()
                for iface in (sample.get("networks") or {}).values():
                    network.rx_bytes += int(iface.get("rx_bytes") or 0)
                    network.tx_bytes += int(iface.get("tx_bytes") or 0)

                stats = Stats(
                    memory=calculate_docker_memory(memory),
                    memory_limit=int(memory.get("limit") or 0),
                    cpu_absolute=calculate_docker_absolute_cpu(
                        sample.get("precpu_stats"), sample.get("cpu_stats") or {}
                    ),
                    network=network,
                    uptime=uptime,
                )
                self.events().publish(RESOURCE_EVENT, stats)
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()
            log.debug("stopped resource polling for container", extra={"fields": fields})