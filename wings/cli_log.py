"""A logging handler producing the daemon's console log format."""

from __future__ import annotations

import logging
import sys
import traceback
from datetime import datetime
from typing import Any, TextIO

_RESET = "\x1b[0m"
_BOLD = "1"
_BOLD_RED = "1;31"

_LEVELS = [
    (logging.DEBUG, "DEBUG", "37"),
    (logging.INFO, " INFO", "34"),
    (logging.WARNING, " WARN", "33"),
    (logging.ERROR, "ERROR", "31"),
]
_FATAL = ("FATAL", "31")


def _level(levelno: int) -> tuple[str, str]:
    for limit, name, color in _LEVELS:
        if levelno <= limit:
            return name, color
    return _FATAL


def _stamp_milli(created: float) -> str:
    dt = datetime.fromtimestamp(created)
    return f"{dt:%b} {dt.day:>2} {dt:%H:%M:%S}.{dt.microsecond // 1000:03d}"


class CliHandler(logging.Handler):
    """Writes records as "LEVEL: [time] message key=value ...".

    Structured fields are taken from a ``fields`` mapping on the record, passed
    with ``extra={"fields": {...}}``. An exception under the ``error`` field is
    followed by its traceback.
    """

    def __init__(self, stream: TextIO | None = None, use_colors: bool = True) -> None:
        super().__init__()
        self.stream = stream if stream is not None else sys.stderr
        isatty = getattr(self.stream, "isatty", None)
        self.use_colors = bool(use_colors and callable(isatty) and isatty())
        self.padding = 2

    def _paint(self, text: str, code: str) -> str:
        if not self.use_colors:
            return text
        return f"\x1b[{code}m{text}{_RESET}"

    def format_record(self, record: logging.LogRecord) -> str:
        """Return the full text written for a record, trailing newlines included."""
        level, color = _level(record.levelno)
        fields: dict[str, Any] = dict(getattr(record, "fields", None) or {})

        label = self._paint(f"{level:>{self.padding + 1}}", _BOLD)
        head = f"{label}: [{_stamp_milli(record.created)}] {record.getMessage():<25}"
        out = [self._paint(head, color)]
        for name in sorted(fields):
            if name == "source":
                continue
            out.append(f" {self._paint(name, color)}={fields[name]}")
        out.append("\n")

        error = fields.get("error")
        if not isinstance(error, BaseException) and record.exc_info and record.exc_info[1]:
            error = record.exc_info[1]
        if isinstance(error, BaseException):
            trace = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ).rstrip("\n")
            out.append(f"\n{self._paint('Stacktrace:', _BOLD_RED)}\n{trace}\n\n")
        return "".join(out)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.stream.write(self.format_record(record))
            self.stream.flush()
        except Exception:
            self.handleError(record)