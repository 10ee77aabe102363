"""A small publish/subscribe bus carrying JSON encoded events."""

from __future__ import annotations

import dataclasses
import json
import threading
from dataclasses import dataclass
from typing import Any, Callable

Sink = Callable[[bytes], Any]


@dataclass
class Event:
    """An event sent over a bus."""

    topic: str
    data: Any = None


def _encode(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"cannot encode value of type {type(value).__name__}")


class Bus:
    """Delivers every published event, as encoded bytes, to each registered sink."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sinks: list[Sink] = []

    def on(self, sink: Sink) -> None:
        """Register a callable that receives each encoded event."""
        with self._lock:
            if sink not in self._sinks:
                self._sinks.append(sink)

    def off(self, sink: Sink) -> None:
        """Stop delivering events to a sink; unknown sinks are ignored."""
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def publish(self, topic: str, data: Any) -> None:
        """Encode an event and push it to every sink.

        A namespaced topic such as "backup completed:1234" is sent under its
        base name, "backup completed".
        """
        topic = topic.split(":", 1)[0]
        payload = json.dumps(
            {"Topic": topic, "Data": data}, default=_encode, separators=(",", ":")
        ).encode()
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            sink(payload)


def decode(data: bytes | str) -> Event:
    """Decode bytes produced by Bus.publish back into an Event."""
    try:
        raw = json.loads(data)
    except (ValueError, TypeError) as exc:
        raise ValueError("events: failed to decode byte slice") from exc
    if not isinstance(raw, dict):
        raise ValueError("events: failed to decode byte slice")
    return Event(topic=raw.get("Topic", ""), data=raw.get("Data"))