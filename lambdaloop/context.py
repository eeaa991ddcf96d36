"""Invocation metadata and Lambda environment information for a request."""

from __future__ import annotations

import contextlib
import contextvars
import copy
import os
import re
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ClientApplication:
    """Metadata about the calling application."""

    installation_id: str = ""
    app_title: str = ""
    app_version_code: str = ""
    app_package_name: str = ""


@dataclass
class ClientContext:
    """Client application information passed by the invoker."""

    client: ClientApplication = field(default_factory=ClientApplication)
    env: dict[str, str] = field(default_factory=dict)
    custom: dict[str, str] = field(default_factory=dict)


@dataclass
class CognitoIdentity:
    """Cognito identity used by the caller."""

    cognito_identity_id: str = ""
    cognito_identity_pool_id: str = ""


@dataclass(frozen=True)
class _Environment:
    aws_region: str
    aws_default_region: str
    function_name: str
    function_version: str
    log_group_name: str
    log_stream_name: str
    aws_execution_env: str
    initialization_type: str
    memory_limit_in_mb: int


_INT_RE = re.compile(r"[+-]?[0-9]+")
_env_lock = threading.Lock()
_env_cache: _Environment | None = None


def _read_environment() -> _Environment:
    memory = os.environ.get("AWS_LAMBDA_FUNCTION_MEMORY_SIZE", "")
    return _Environment(
        aws_region=os.environ.get("AWS_REGION", ""),
        aws_default_region=os.environ.get("AWS_DEFAULT_REGION", ""),
        function_name=os.environ.get("AWS_LAMBDA_FUNCTION_NAME", ""),
        function_version=os.environ.get("AWS_LAMBDA_FUNCTION_VERSION", ""),
        log_group_name=os.environ.get("AWS_LAMBDA_LOG_GROUP_NAME", ""),
        log_stream_name=os.environ.get("AWS_LAMBDA_LOG_STREAM_NAME", ""),
        aws_execution_env=os.environ.get("AWS_EXECUTION_ENV", ""),
        initialization_type=os.environ.get("AWS_LAMBDA_INITIALIZATION_TYPE", ""),
        memory_limit_in_mb=int(memory) if _INT_RE.fullmatch(memory) else 0,
    )


def _environment() -> _Environment:
    global _env_cache
    with _env_lock:
        if _env_cache is None:
            _env_cache = _read_environment()
        return _env_cache


def reset_environment_cache() -> None:
    """Forget the cached environment so the next population re-reads it."""
    global _env_cache
    with _env_lock:
        _env_cache = None


@dataclass
class RequestContext:
    """Per-invocation metadata plus the Lambda environment metadata."""

    aws_request_id: str = ""
    invoked_function_arn: str = ""
    deadline: datetime | None = None
    trace_id: str = ""
    identity: CognitoIdentity = field(default_factory=CognitoIdentity)
    client_context: ClientContext = field(default_factory=ClientContext)

    aws_region: str = ""
    aws_default_region: str = ""
    function_name: str = ""
    function_version: str = ""
    log_group_name: str = ""
    log_stream_name: str = ""
    memory_limit_in_mb: int = 0
    aws_execution_env: str = ""
    initialization_type: str = ""

    _env_populated: bool = field(default=False, init=False, repr=False, compare=False)

    def populate_from_environment(self) -> None:
        """Fill the environment fields from the (cached) process environment."""
        env = _environment()
        self.aws_region = env.aws_region
        self.aws_default_region = env.aws_default_region
        self.function_name = env.function_name
        self.function_version = env.function_version
        self.log_group_name = env.log_group_name
        self.log_stream_name = env.log_stream_name
        self.aws_execution_env = env.aws_execution_env
        self.initialization_type = env.initialization_type
        self.memory_limit_in_mb = env.memory_limit_in_mb
        self._env_populated = True

    def clear_invocation(self) -> None:
        """Reset per-invocation fields, keeping the environment metadata."""
        self.aws_request_id = ""
        self.invoked_function_arn = ""
        self.deadline = None
        self.trace_id = ""
        self.identity = CognitoIdentity()
        self.client_context.env.clear()
        self.client_context.custom.clear()


_current: contextvars.ContextVar[RequestContext | None] = contextvars.ContextVar(
    "request_context", default=None
)


@contextlib.contextmanager
def use_request_context(rc: RequestContext) -> Iterator[RequestContext]:
    """Make rc the current request context for the duration of the block."""
    token = _current.set(rc)
    try:
        yield rc
    finally:
        _current.reset(token)


@contextlib.contextmanager
def use_request_context_copy(rc: RequestContext) -> Iterator[RequestContext]:
    """Like use_request_context, but stores a copy isolated from later changes."""
    with use_request_context(copy.deepcopy(rc)) as stored:
        yield stored


def get_request_context() -> RequestContext | None:
    """Return the current request context, or None when none is set."""
    return _current.get()


_POOL_LIMIT = 64
_pool_lock = threading.Lock()
_pool: list[RequestContext] = []


def acquire_request_context() -> RequestContext:
    """Take a cleaned request context from the pool, environment populated."""
    with _pool_lock:
        rc = _pool.pop() if _pool else RequestContext()
    if not rc._env_populated:
        rc.populate_from_environment()
    return rc


def release_request_context(rc: RequestContext) -> None:
    """Clean a request context and return it to the pool for reuse."""
    rc.clear_invocation()
    with _pool_lock:
        if len(_pool) < _POOL_LIMIT:
            _pool.append(rc)