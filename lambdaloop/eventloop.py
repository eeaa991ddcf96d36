"""Invocation loop that drives a lifecycle-aware handler against the Runtime API."""

from __future__ import annotations

import contextlib
import dataclasses
import json
import signal
import sys
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from .context import (
    acquire_request_context,
    release_request_context,
    use_request_context,
)
from .log import JsonLogger, Level
from .runtimeapi import Client, Invocation, RuntimeAPIError, new_client

_RETRY_DELAY = 0.1


class Handler:
    """Lifecycle-aware handler; subclasses override the steps they need.

    ``ready`` is true between a successful cold start and shutdown.
    """

    ready: bool = False

    def cold_start(self) -> None:
        """Run once before the first invocation; raise to fail initialisation."""
        self.ready = True

    def validate(self, event: Any) -> None:
        """Check an event before it is handled; raise to reject it."""
        return None

    def handle(self, event: Any) -> Any:
        """Process an event and return the result to send back."""
        return None

    def shutdown(self) -> None:
        """Run once when the loop is asked to stop."""
        self.ready = False


@dataclass
class ErrorResponse:
    """Error body posted to the Runtime API."""

    error_message: str = ""
    error_type: str = ""

    def to_json(self) -> bytes:
        """Encode as the Runtime API error document."""
        return _dumps({"errorMessage": self.error_message, "errorType": self.error_type})


class _Interrupted(Exception):
    """Raised from the signal handler to break out of a blocking poll."""


def _encode_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(value: Any) -> bytes:
    return json.dumps(
        value,
        default=_encode_default,
        ensure_ascii=False,
        allow_nan=False,
        separators=(",", ":"),
    ).encode("utf-8")


def _ms_since(start_ns: int) -> int:
    return (time.perf_counter_ns() - start_ns) // 1_000_000


class EventLoop:
    """Fetches invocations, runs the handler and posts the outcome."""

    def __init__(
        self,
        handler: Handler,
        decode: Callable[[Any], Any] | None = None,
        client: Client | None = None,
        logger: JsonLogger | None = None,
    ) -> None:
        self.handler = handler
        self.decode = decode
        self.client = client
        self.logger = logger if logger is not None else JsonLogger(Level.INFO, sys.stdout)
        self._stopping = threading.Event()
        self._polling = False

    def _api(self) -> Client:
        if self.client is None:
            self.client = new_client()
        return self.client

    def stop(self) -> None:
        """Ask the loop to shut down before the next invocation."""
        self._stopping.set()

    def process(self, invocation: Invocation, next_ms: int = 0) -> dict[str, Any]:
        """Handle one invocation, post its outcome and return the logged metrics."""
        api = self._api()
        timings = {
            "next_ms": next_ms,
            "unmarshal_ms": 0,
            "validate_ms": 0,
            "handler_ms": 0,
            "marshal_ms": 0,
            "post_ms": 0,
        }
        rc = acquire_request_context()
        rc.aws_request_id = invocation.request_id
        rc.invoked_function_arn = invocation.invoked_function_arn
        rc.deadline = invocation.deadline
        rc.trace_id = invocation.trace_id
        try:
            with use_request_context(rc):
                error_type = self._invoke(api, invocation, timings)
        finally:
            release_request_context(rc)

        metrics: dict[str, Any] = {
            "request_id": invocation.request_id,
            "outcome": "success" if error_type is None else "error",
        }
        if error_type is not None:
            metrics["error_type"] = error_type
        metrics.update(timings)
        metrics["total_ms"] = sum(timings.values())
        self.logger.info("invocation.metrics", dict(metrics))
        return metrics

    def _invoke(
        self, api: Client, invocation: Invocation, timings: dict[str, int]
    ) -> str | None:
        """Run the steps for one invocation; return the error type or None."""
        start = time.perf_counter_ns()
        try:
            payload = json.loads(invocation.payload) if invocation.payload else None
            event = self.decode(payload) if self.decode is not None else payload
        except Exception as exc:
            self._post_error(api, invocation.request_id, str(exc), "UnmarshalError", timings)
            timings["unmarshal_ms"] = _ms_since(start)
            return "UnmarshalError"
        timings["unmarshal_ms"] = _ms_since(start)

        start = time.perf_counter_ns()
        try:
            self.handler.validate(event)
        except Exception as exc:
            self._post_error(api, invocation.request_id, str(exc), "ValidationError", timings)
            timings["validate_ms"] = _ms_since(start)
            return "ValidationError"
        timings["validate_ms"] = _ms_since(start)

        start = time.perf_counter_ns()
        try:
            result = self.handler.handle(event)
        except Exception as exc:
            timings["handler_ms"] = _ms_since(start)
            error_type = type(exc).__name__
            self._post_error(api, invocation.request_id, str(exc), error_type, timings)
            return error_type
        timings["handler_ms"] = _ms_since(start)

        start = time.perf_counter_ns()
        try:
            body = _dumps(result)
        except (TypeError, ValueError, RecursionError) as exc:
            timings["marshal_ms"] = _ms_since(start)
            start = time.perf_counter_ns()
            err_body = ErrorResponse(str(exc), "MarshalError").to_json()
            with contextlib.suppress(RuntimeAPIError, ValueError, OSError):
                api.error(invocation.request_id, err_body)
            timings["post_ms"] = _ms_since(start)
            return "MarshalError"
        timings["marshal_ms"] = _ms_since(start)

        start = time.perf_counter_ns()
        with contextlib.suppress(RuntimeAPIError, ValueError, OSError):
            api.response(invocation.request_id, body)
        timings["post_ms"] = _ms_since(start)
        return None

    @staticmethod
    def _post_error(
        api: Client,
        request_id: str,
        message: str,
        error_type: str,
        timings: dict[str, int],
    ) -> None:
        start = time.perf_counter_ns()
        body = ErrorResponse(message, error_type).to_json()
        timings["marshal_ms"] = _ms_since(start)
        start = time.perf_counter_ns()
        with contextlib.suppress(RuntimeAPIError, ValueError, OSError):
            api.error(request_id, body)
        timings["post_ms"] = _ms_since(start)

    def _on_signal(self, signum: int, frame: Any) -> None:
        self._stopping.set()
        if self._polling:
            raise _Interrupted()

    @contextlib.contextmanager
    def _signals(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        previous = {
            sig: signal.signal(sig, self._on_signal)
            for sig in (signal.SIGTERM, signal.SIGINT)
        }
        try:
            yield
        finally:
            for sig, old in previous.items():
                signal.signal(sig, old)

    def run(self) -> None:
        """Initialise the handler and serve invocations until stopped.

        Raises the cold-start error after reporting it to the Runtime API.
        """
        api = self._api()
        with self._signals():
            try:
                self.handler.cold_start()
            except Exception as exc:
                self._emit_init_error(api, exc)
                raise

            while True:
                if self._stopping.is_set():
                    try:
                        self.handler.shutdown()
                    except Exception as exc:
                        self.logger.error("shutdown error", "error", str(exc))
                    return

                poll_start = time.perf_counter_ns()
                try:
                    self._polling = True
                    invocation = api.next()
                    self._polling = False
                except (RuntimeAPIError, OSError, _Interrupted):
                    self._polling = False
                    if not self._stopping.is_set():
                        time.sleep(_RETRY_DELAY)
                    continue
                self.process(invocation, _ms_since(poll_start))

    def _emit_init_error(self, api: Client, exc: Exception) -> None:
        body = ErrorResponse(str(exc), "InitError").to_json()
        with contextlib.suppress(RuntimeAPIError, ValueError, OSError):
            api.init_error(body)


def start(handler: Handler, decode: Callable[[Any], Any] | None = None) -> None:
    """Run a handler against the Runtime API; exit with status 1 on failure."""
    loop = EventLoop(handler, decode)
    try:
        loop.run()
    except Exception as exc:
        loop.logger.error("event loop error", "error", str(exc))
        raise SystemExit(1) from exc