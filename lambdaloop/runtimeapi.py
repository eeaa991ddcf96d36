"""Client for the Lambda Runtime API: fetch invocations, post results and errors."""

from __future__ import annotations

import http.client
import os
import re
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Union

RUNTIME_API_PREFIX = "/2018-06-01/runtime"

HEADER_REQUEST_ID = "Lambda-Runtime-Aws-Request-Id"
HEADER_DEADLINE_MS = "Lambda-Runtime-Deadline-Ms"
HEADER_TRACE_ID = "Lambda-Runtime-Trace-Id"
HEADER_COGNITO_IDENTITY = "Lambda-Runtime-Cognito-Identity"
HEADER_CLIENT_CONTEXT = "Lambda-Runtime-Client-Context"
HEADER_INVOKED_FUNCTION_ARN = "Lambda-Runtime-Invoked-Function-Arn"

_POST_TIMEOUT = 5.0
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_INT_RE = re.compile(r"[+-]?[0-9]+")

Headers = Union[Mapping[str, str], http.client.HTTPMessage, Iterable[tuple[str, str]]]


class RuntimeAPIError(Exception):
    """Raised when the Runtime API cannot be reached or answers with an error."""


@dataclass
class Invocation:
    """One function invocation received from the Runtime API."""

    request_id: str = ""
    invoked_function_arn: str = ""
    deadline: datetime | None = None
    trace_id: str = ""
    cognito_identity: str = ""
    client_context: str = ""
    payload: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


def _header_items(headers: Headers) -> list[tuple[str, str]]:
    if hasattr(headers, "items"):
        return list(headers.items())
    return list(headers)


def _first_values(headers: Headers) -> dict[str, str]:
    """Header values keyed by lower-cased name; the first occurrence wins."""
    found: dict[str, str] = {}
    for name, value in _header_items(headers):
        found.setdefault(name.lower(), value)
    return found


def parse_deadline(headers: Headers) -> datetime | None:
    """Read the Unix-millisecond deadline header; None if missing or invalid."""
    raw = _first_values(headers).get(HEADER_DEADLINE_MS.lower(), "")
    if not _INT_RE.fullmatch(raw):
        return None
    try:
        return _EPOCH + timedelta(milliseconds=int(raw))
    except OverflowError:
        return None


def parse_invocation(
    status: int, reason: str, headers: Headers, body: bytes
) -> Invocation:
    """Build an Invocation from a /invocation/next reply.

    Raises RuntimeAPIError when the status is not 200.
    """
    if status != 200:
        text = body.decode("utf-8", errors="replace")
        raise RuntimeAPIError(f"invocation/next failed: {status} {reason}: {text}")
    values = _first_values(headers)
    copied: dict[str, str] = {}
    for name, value in _header_items(headers):
        copied.setdefault(name, value)
    return Invocation(
        request_id=values.get(HEADER_REQUEST_ID.lower(), ""),
        invoked_function_arn=values.get(HEADER_INVOKED_FUNCTION_ARN.lower(), ""),
        deadline=parse_deadline(headers),
        trace_id=values.get(HEADER_TRACE_ID.lower(), ""),
        cognito_identity=values.get(HEADER_COGNITO_IDENTITY.lower(), ""),
        client_context=values.get(HEADER_CLIENT_CONTEXT.lower(), ""),
        payload=bytes(body),
        headers=copied,
    )


class _Connection:
    """A reusable keep-alive HTTP connection, reopened after failures."""

    def __init__(self, host: str, timeout: float | None) -> None:
        self._host = host
        self._timeout = timeout
        self._lock = threading.Lock()
        self._conn: http.client.HTTPConnection | None = None

    def request(
        self, method: str, path: str, body: bytes | None, headers: dict[str, str]
    ) -> tuple[int, str, http.client.HTTPMessage, bytes]:
        with self._lock:
            if self._conn is None:
                self._conn = http.client.HTTPConnection(self._host, timeout=self._timeout)
            try:
                self._conn.request(method, path, body=body, headers=headers)
                resp = self._conn.getresponse()
                data = resp.read()
            except (OSError, http.client.HTTPException):
                self._conn.close()
                self._conn = None
                raise
            if resp.will_close:
                self._conn.close()
                self._conn = None
            return resp.status, resp.reason, resp.headers, data

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class Client:
    """Runtime API client with separate connections for polling and posting."""

    def __init__(self, host: str) -> None:
        if not host:
            raise RuntimeAPIError("AWS_LAMBDA_RUNTIME_API environment variable not set")
        self.host = host
        self.base_url = "http://" + host + RUNTIME_API_PREFIX
        self.next_url = self.base_url + "/invocation/next"
        self.init_error_url = self.base_url + "/init/error"
        self._invocation_prefix = self.base_url + "/invocation/"
        self._next_conn = _Connection(host, None)
        self._post_conn = _Connection(host, _POST_TIMEOUT)

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connections."""
        self._next_conn.close()
        self._post_conn.close()

    def _path(self, url: str) -> str:
        return url[len("http://" + self.host):]

    def next(self) -> Invocation:
        """Block until the next invocation arrives and return it."""
        try:
            status, reason, headers, body = self._next_conn.request(
                "GET", self._path(self.next_url), None, {}
            )
        except (OSError, http.client.HTTPException) as exc:
            raise RuntimeAPIError(f"failed to get next invocation: {exc}") from exc
        return parse_invocation(status, reason, headers, body)

    def response(self, request_id: str, payload: bytes) -> None:
        """Send the successful result of an invocation."""
        if not request_id:
            raise ValueError("requestID cannot be empty")
        self._post(self._invocation_prefix + request_id + "/response", payload)

    def error(self, request_id: str, err_body: bytes) -> None:
        """Report that an invocation failed."""
        if not request_id:
            raise ValueError("requestID cannot be empty")
        self._post(self._invocation_prefix + request_id + "/error", err_body)

    def init_error(self, err_body: bytes) -> None:
        """Report that initialisation failed."""
        self._post(self.init_error_url, err_body)

    def _post(self, url: str, body: bytes) -> None:
        headers = {
            "Content-Type": "application/json; charset=utf-8",
            "Content-Length": str(len(body)),
        }
        try:
            status, reason, _, data = self._post_conn.request(
                "POST", self._path(url), body, headers
            )
        except (OSError, http.client.HTTPException) as exc:
            raise RuntimeAPIError(f"HTTP request failed: {exc}") from exc
        if status >= 300:
            text = data.decode("utf-8", errors="replace")
            raise RuntimeAPIError(f"POST {url} failed: {status} {reason}: {text}")


def new_client() -> Client:
    """Create a client for the endpoint named by AWS_LAMBDA_RUNTIME_API."""
    return Client(os.environ.get("AWS_LAMBDA_RUNTIME_API", ""))