"""Progress tracking for I/O operations."""

from __future__ import annotations

import threading
from typing import Any


def _format_bytes(count: int) -> str:
    if count < 1024:
        return f"{count} B"
    div, exp = 1024, 0
    n = count // 1024
    while n >= 1024:
        div *= 1024
        exp += 1
        n //= 1024
    return f"{count / div:.1f} {'KMGTPE'[exp]}iB"


class Progress:
    """Counts bytes passing through a writer and renders a progress bar."""

    def __init__(self, total: int, writer: Any = None) -> None:
        self._lock = threading.Lock()
        self._written = 0
        self._total = total
        self.writer = writer

    @property
    def written(self) -> int:
        """Number of bytes written so far."""
        with self._lock:
            return self._written

    @property
    def total(self) -> int:
        """Expected total size in bytes."""
        with self._lock:
            return self._total

    def set_total(self, total: int) -> None:
        """Update the expected total size, for example as it is being calculated."""
        with self._lock:
            self._total = total

    def write(self, data: bytes) -> int:
        """Count the bytes and pass them on to the wrapped writer, if any."""
        n = len(data)
        with self._lock:
            self._written += n
        if self.writer is not None:
            return self.writer.write(data)
        return n

    def render(self, width: int) -> str:
        """Return a bar of the given width followed by written and total sizes."""
        current = self.written
        total = self.total
        ticks = 0
        if width > 0 and total > 0:
            width_percentage = 100.0 / width
            percentage = current / total * 100
            ticks = int(percentage / width_percentage)
        ticks = max(0, min(ticks, max(width, 0)))
        bar = "=" * ticks + " " * (width - ticks)
        return f"[{bar}] {_format_bytes(current)} / {_format_bytes(total)}"