# lambdaloop

A small custom runtime for AWS Lambda. It talks to the Lambda Runtime API,
drives a handler through its lifecycle (cold start, validate, handle,
shutdown) and writes one structured JSON log line of timings per invocation.
It has no dependencies outside the standard library.

## Install

```
pip install lambdaloop
```

## Writing a handler

Subclass `lambdaloop.eventloop.Handler` and override the steps you need:

- `cold_start()` runs once before the first invocation. Raising here posts an
  `InitError` to the Runtime API and `run()` re-raises the exception.
- `validate(event)` raises to reject an event; the error is posted with type
  `ValidationError`.
- `handle(event)` returns a JSON-serialisable result (dataclasses are encoded
  as objects), or raises to post an error whose type is the exception's class
  name. A result that cannot be encoded is posted as `MarshalError`.
- `shutdown()` runs once when the loop stops.

The base class's `ready` attribute is true between `cold_start()` and
`shutdown()`.

Then call `lambdaloop.eventloop.start(handler, decode)`. `decode` is optional;
it receives the payload after JSON decoding and returns your event object.
A payload that is not valid JSON, or that `decode` rejects, is posted as
`UnmarshalError`. `start` reads the endpoint from `AWS_LAMBDA_RUNTIME_API` and
exits with status 1 if the loop fails (for example when that variable is unset
or the cold start raises).

For more control, build an `EventLoop(handler, decode, client, logger)`
yourself:

- `run()` serves invocations until asked to stop. When it runs in the main
  thread, SIGTERM and SIGINT stop it; `stop()` does the same from code. The
  handler's `shutdown()` runs before `run()` returns. Failed polls are retried
  after 100 ms.
- `process(invocation, next_ms)` runs one `Invocation` through the handler,
  posts the outcome and returns the metrics dict it logged (`request_id`,
  `outcome`, `error_type` on failure, and the `*_ms` timings with `total_ms`).

Each invocation produces a log line with message `invocation.metrics`.

## Request metadata

While an invocation is handled, `lambdaloop.context.get_request_context()`
returns its `RequestContext`: request id, function ARN, deadline, trace id,
and the function's environment (region, default region, function name and
version, log group and stream, memory limit, execution environment,
initialization type). Outside an invocation it returns `None`.

The environment is read once and cached; `reset_environment_cache()` makes the
next `populate_from_environment()` read it again. `use_request_context(rc)`
and `use_request_context_copy(rc)` are context managers that set the current
request context yourself, the second storing an isolated copy.

## Runtime API client

`lambdaloop.runtimeapi.Client(host)` (or `new_client()`, which takes the host
from `AWS_LAMBDA_RUNTIME_API`) offers `next()`, `response(request_id, payload)`,
`error(request_id, err_body)` and `init_error(err_body)`. Network failures and
non-success replies raise `RuntimeAPIError`; an empty request id raises
`ValueError`. The client is a context manager that closes its connections.
`parse_invocation(status, reason, headers, body)` and `parse_deadline(headers)`
turn a raw reply into an `Invocation`.

## Logging

`lambdaloop.log.JsonLogger(level, out)` writes one JSON object per line, with
sorted keys, to `out` (nothing is written when `out` is `None`). Each line
holds `timestamp`, `level` and `message` plus any fields passed as alternating
key/value arguments or as a single dict. `bind(...)` returns a child logger
carrying extra fields; `with_error(err)` adds an `error` field. Entries below
the logger's level are dropped. `parse_level("warning")` turns a level name
into a `Level`; unknown names give `Level.INFO`.

## Example runtime

The package ships an example runtime that echoes its input:

```
lambdaloop-bootstrap
```

An event `{"input": "abc"}` returns `{"input":"abc","output":"processed:abc"}`.
Inputs of the form `sleep:50ms` or `cpu:50ms` add a synthetic sleep or a busy
loop of that length before answering. An empty input is rejected with
`input is required`.

## What it does not do

- There is no local emulator of the Runtime API: the loop needs a Lambda
  environment, or something else serving that API at `AWS_LAMBDA_RUNTIME_API`.
- The invocation deadline is recorded but not enforced; a handler that runs
  past it is not interrupted.
- Cognito identity and client context arrive as raw header strings on the
  `Invocation`; they are not parsed into the `RequestContext`.