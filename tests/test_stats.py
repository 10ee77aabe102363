import threading
from datetime import datetime, timedelta, timezone

import pytest

from wings.docker.stats import (
    StatsMixin,
    calculate_docker_absolute_cpu,
    calculate_docker_memory,
)
from wings.events import Bus, decode


class FakeClient:
    def __init__(self, samples=(), inspect=None):
        self.samples = samples
        self.inspect = inspect if inspect is not None else {"State": {"Running": False}}

    def container_inspect(self, container_id):
        return self.inspect

    def container_stats(self, container_id):
        return self.samples


class ClosingStream:
    def __init__(self, samples):
        self._samples = list(samples)
        self.closed = False

    def __iter__(self):
        return iter(self._samples)

    def close(self):
        self.closed = True


class Host(StatsMixin):
    def __init__(self, client, state="running"):
        self.id = "abc-123"
        self.client = client
        self._state = state
        self._bus = Bus()
        self.received = []
        self._bus.on(lambda raw: self.received.append(decode(raw)))

    def state(self):
        return self._state

    def events(self):
        return self._bus


def sample(rx=10, tx=5, usage=1000, read="0001-01-01T00:00:00Z", preread="0001-01-01T00:00:00Z"):
    return {
        "read": read,
        "preread": preread,
        "memory_stats": {"usage": usage, "limit": 4096, "stats": {}},
        "cpu_stats": {"cpu_usage": {"total_usage": 0}, "system_cpu_usage": 0},
        "precpu_stats": {"cpu_usage": {"total_usage": 0}, "system_cpu_usage": 0},
        "networks": {
            "eth0": {"rx_bytes": rx, "tx_bytes": tx},
            "eth1": {"rx_bytes": 0, "tx_bytes": 0},
        },
    }


class GoingOfflineStream:
    """Hands out one sample, then marks the host offline before the second."""

    def __init__(self, host):
        self._host = host
        self._count = 0

    def __iter__(self):
        return self

    def __next__(self):
        self._count += 1
        if self._count == 1:
            return sample()
        if self._count == 2:
            self._host._state = "offline"
            return sample()
        raise StopIteration


class FailingStream:
    """Hands out one sample, then fails to decode the next one."""

    def __init__(self):
        self._count = 0

    def __iter__(self):
        return self

    def __next__(self):
        self._count += 1
        if self._count == 1:
            return sample()
        raise ValueError("bad json")


def test_memory_subtracts_total_inactive_file():
    assert calculate_docker_memory({"usage": 1000, "stats": {"total_inactive_file": 200}}) == 800


def test_memory_falls_back_to_inactive_file_when_total_is_too_large():
    with_total = calculate_docker_memory(
        {"usage": 1000, "stats": {"total_inactive_file": 5000, "inactive_file": 300}}
    )
    without_total = calculate_docker_memory({"usage": 1000, "stats": {"inactive_file": 300}})
    assert with_total == without_total


def test_memory_without_stats_is_usage():
    assert calculate_docker_memory({"usage": 1234}) == 1234


def test_memory_inactive_larger_than_usage_returns_usage():
    assert calculate_docker_memory({"usage": 50, "stats": {"inactive_file": 60}}) == 50


def test_memory_zero_usage():
    assert calculate_docker_memory({"usage": 0, "stats": {"inactive_file": 0}}) == 0


def test_cpu_worked_example():
    previous = {"cpu_usage": {"total_usage": 100}, "system_cpu_usage": 1000}
    current = {"cpu_usage": {"total_usage": 200}, "system_cpu_usage": 2000, "online_cpus": 2}
    assert calculate_docker_absolute_cpu(previous, current) == 20.0


def test_cpu_without_system_delta_is_zero():
    previous = {"cpu_usage": {"total_usage": 100}, "system_cpu_usage": 1000}
    current = {"cpu_usage": {"total_usage": 200}, "system_cpu_usage": 1000, "online_cpus": 2}
    assert calculate_docker_absolute_cpu(previous, current) == 0.0


def test_cpu_falls_back_to_percpu_count():
    previous = {"cpu_usage": {"total_usage": 100}, "system_cpu_usage": 1000}
    by_percpu = {
        "cpu_usage": {"total_usage": 300, "percpu_usage": [1, 2, 3, 4]},
        "system_cpu_usage": 4000,
        "online_cpus": 0,
    }
    by_online = {"cpu_usage": {"total_usage": 300}, "system_cpu_usage": 4000, "online_cpus": 4}
    assert calculate_docker_absolute_cpu(previous, by_percpu) == calculate_docker_absolute_cpu(
        previous, by_online
    )


def test_cpu_is_rounded_to_three_decimals():
    previous = {"cpu_usage": {"total_usage": 0}, "system_cpu_usage": 0}
    current = {"cpu_usage": {"total_usage": 1}, "system_cpu_usage": 3, "online_cpus": 1}
    value = calculate_docker_absolute_cpu(previous, current)
    assert round(value, 3) == value
    assert 0 < value < 100


def test_uptime_not_running_is_zero():
    host = Host(FakeClient(inspect={"State": {"Running": False}}))
    assert StatsMixin.uptime(host) == 0


def test_uptime_running_measures_since_start():
    started = datetime.now(timezone.utc) - timedelta(seconds=5)
    stamp = started.strftime("%Y-%m-%dT%H:%M:%S") + ".123456789Z"
    host = Host(FakeClient(inspect={"State": {"Running": True, "StartedAt": stamp}}))
    assert 3000 <= StatsMixin.uptime(host) <= 7000


def test_uptime_bad_timestamp_raises():
    host = Host(FakeClient(inspect={"State": {"Running": True, "StartedAt": "yesterday"}}))
    with pytest.raises(ValueError):
        StatsMixin.uptime(host)


def test_poll_refuses_offline_environment():
    host = Host(FakeClient([sample()]), state="offline")
    with pytest.raises(RuntimeError):
        StatsMixin.poll_resources(host)


def test_poll_publishes_resource_events():
    stream = ClosingStream([sample(), sample()])
    host = Host(FakeClient(stream))
    StatsMixin.poll_resources(host)
    assert [e.topic for e in host.received] == ["resources", "resources"]
    data = host.received[0].data
    assert data["memory_bytes"] == 1000
    assert data["memory_limit_bytes"] == 4096
    assert data["network"] == {"rx_bytes": 10, "tx_bytes": 5}
    assert stream.closed


def test_poll_adds_read_interval_to_uptime():
    stream = [sample(read="2024-01-01T00:00:01.000000000Z", preread="2024-01-01T00:00:00Z")]
    host = Host(FakeClient(stream))
    StatsMixin.poll_resources(host)
    assert host.received[0].data["uptime"] == 1000


def test_poll_stops_when_environment_goes_offline():
    host = Host(FakeClient())
    host.client.samples = GoingOfflineStream(host)
    StatsMixin.poll_resources(host)
    assert len(host.received) == 1


def test_poll_stops_when_stop_event_is_set():
    stream = ClosingStream([sample()])
    host = Host(FakeClient(stream))
    stop = threading.Event()
    stop.set()
    StatsMixin.poll_resources(host, stop)
    assert host.received == []
    assert stream.closed


def test_poll_returns_quietly_on_decode_error():
    host = Host(FakeClient(FailingStream()))
    StatsMixin.poll_resources(host)
    assert len(host.received) == 1