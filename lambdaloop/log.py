"""Leveled structured logging that writes one JSON object per line."""

from __future__ import annotations

import copy
import enum
import json
import threading
import time
from typing import Any, TextIO


class Level(enum.IntEnum):
    """Severity of a log entry; higher is more severe."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3


def parse_level(s: str) -> Level:
    """Parse a level name case-insensitively; unknown names give INFO."""
    name = s.strip().upper()
    if name == "DEBUG":
        return Level.DEBUG
    if name in ("WARN", "WARNING"):
        return Level.WARN
    if name == "ERROR":
        return Level.ERROR
    return Level.INFO


_LEVEL_NAMES = {
    Level.DEBUG: "DEBUG",
    Level.INFO: "INFO",
    Level.WARN: "WARN",
    Level.ERROR: "ERROR",
}

# Characters escaped in output so log lines are safe to embed in HTML.
_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_HTML_TABLE = str.maketrans(_HTML_ESCAPES)


def _level_name(level: int) -> str:
    try:
        return _LEVEL_NAMES[Level(level)]
    except ValueError:
        return "INFO"


def _timestamp() -> str:
    """UTC time with nanosecond precision, e.g. 2024-01-02T03:04:05.000000000Z."""
    secs, frac = divmod(time.time_ns(), 1_000_000_000)
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(secs)) + f".{frac:09d}Z"


def _parse_args(args: tuple[Any, ...]) -> dict[str, Any] | None:
    """Turn alternating key/value arguments, or a single dict, into fields."""
    if not args:
        return None
    if len(args) == 1 and isinstance(args[0], dict):
        return args[0]
    pairs = zip(args[0::2], args[1::2])
    return {key: value for key, value in pairs if isinstance(key, str)}


class JsonLogger:
    """Logger writing sorted-key JSON lines with timestamp, level and message."""

    def __init__(self, level: Level | int, out: TextIO | None) -> None:
        self.level = Level(level)
        self._out = out
        self._lock = threading.Lock()
        self._fields: dict[str, Any] | None = None

    def bind(self, *args: Any) -> JsonLogger:
        """Return a derived logger carrying extra persistent fields.

        Accepts alternating key, value pairs or a single dict.
        """
        new_fields = _parse_args(args)
        child = copy.copy(self)
        if not new_fields and not self._fields:
            child._fields = None
        else:
            child._fields = {**(self._fields or {}), **(new_fields or {})}
        return child

    def with_error(self, err: BaseException | None) -> JsonLogger:
        """Return a derived logger with a persistent "error" field."""
        if err is None:
            return self
        return self.bind("error", str(err))

    def debug(self, msg: str, *args: Any) -> None:
        self._log(Level.DEBUG, msg, _parse_args(args))

    def info(self, msg: str, *args: Any) -> None:
        self._log(Level.INFO, msg, _parse_args(args))

    def warn(self, msg: str, *args: Any) -> None:
        self._log(Level.WARN, msg, _parse_args(args))

    def error(self, msg: str, *args: Any) -> None:
        self._log(Level.ERROR, msg, _parse_args(args))

    def _log(self, level: Level, msg: str, fields: dict[str, Any] | None) -> None:
        if level < self.level:
            return
        with self._lock:
            entry: dict[str, Any] = {
                "timestamp": _timestamp(),
                "level": _level_name(level),
                "message": msg,
            }
            if self._fields:
                entry.update(self._fields)
            if fields:
                entry.update(fields)
            try:
                line = json.dumps(
                    entry,
                    sort_keys=True,
                    ensure_ascii=False,
                    allow_nan=False,
                    separators=(",", ":"),
                ).translate(_HTML_TABLE)
            except (TypeError, ValueError, RecursionError):
                line = (
                    '{"level":"ERROR","message":"failed to marshal log entry",'
                    '"timestamp":"' + _timestamp() + '"}'
                )
            if self._out is not None:
                self._out.write(line + "\n")