"""Example function: echoes its input, with optional synthetic sleep or CPU load."""

from __future__ import annotations

import re
import sys
import time
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Any

from .eventloop import Handler, start
from .log import JsonLogger, Level

_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}
_COMPONENT = re.compile(r"([0-9]+\.?[0-9]*|\.[0-9]+)(ns|us|µs|μs|ms|s|m|h)")
_MAX_NS = (1 << 63) - 1
_MASK64 = (1 << 64) - 1


def parse_duration(s: str) -> float:
    """Parse a duration such as "50ms" or "1h30m" into seconds.

    Raises ValueError for malformed or out-of-range input.
    """
    text = s
    negative = False
    if text.startswith(("-", "+")):
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f'time: invalid duration "{s}"')
    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{s}"')
        total += Fraction(Decimal(match.group(1))) * _UNIT_NS[match.group(2)]
        pos = match.end()
    if total > _MAX_NS:
        raise ValueError(f'time: invalid duration "{s}"')
    seconds = float(total) / 1e9
    return -seconds if negative else seconds


@dataclass
class Input:
    """Payload expected by the function."""

    input: str = ""

    @classmethod
    def from_json(cls, value: Any) -> Input:
        """Build from a decoded JSON value; null gives the empty input."""
        if value is None:
            return cls()
        if not isinstance(value, dict):
            raise TypeError(f"cannot unmarshal {type(value).__name__} into Input")
        raw = value.get("input")
        if raw is None:
            return cls()
        if not isinstance(raw, str):
            raise TypeError(
                f"cannot unmarshal {type(raw).__name__} into Input.input of type string"
            )
        return cls(input=raw)


@dataclass
class Output:
    """Result returned by the function."""

    input: str = ""
    output: str = ""


class BootstrapHandler(Handler):
    """Validates that input is present and echoes it back."""

    def __init__(self, logger: JsonLogger | None = None) -> None:
        self.log = logger if logger is not None else JsonLogger(Level.INFO, sys.stdout)
        self.cpu_sink = 0

    def cold_start(self) -> None:
        """Mark the handler ready; there is nothing else to set up."""
        super().cold_start()

    def validate(self, event: Input) -> None:
        if not event.input:
            raise ValueError("input is required")

    def handle(self, event: Input) -> Output:
        """Echo the input; "sleep:<d>" sleeps and "cpu:<d>" busy-loops first."""
        if event.input.startswith("sleep:"):
            try:
                delay = parse_duration(event.input[len("sleep:"):])
            except ValueError:
                delay = None
            if delay is not None:
                time.sleep(max(delay, 0.0))
        if event.input.startswith("cpu:"):
            try:
                busy = parse_duration(event.input[len("cpu:"):])
            except ValueError:
                busy = None
            if busy is not None:
                self._burn(busy)
        return Output(input=event.input, output=f"processed:{event.input}")

    def _burn(self, seconds: float) -> None:
        end = time.monotonic() + seconds
        x = 1469598103934665603
        while time.monotonic() < end:
            x ^= 1099511628211
            x = (x * 16777619) & _MASK64
        self.cpu_sink = (self.cpu_sink + (x | 1)) & _MASK64

    def shutdown(self) -> None:
        """Mark the handler no longer ready; there is nothing else to release."""
        super().shutdown()


def main(argv: list[str] | None = None) -> None:
    """Serve the example function against the Runtime API."""
    start(BootstrapHandler(), Input.from_json)


if __name__ == "__main__":
    main()