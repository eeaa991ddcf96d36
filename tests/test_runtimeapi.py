import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from lambdaloop.runtimeapi import (
    HEADER_CLIENT_CONTEXT,
    HEADER_COGNITO_IDENTITY,
    HEADER_DEADLINE_MS,
    HEADER_INVOKED_FUNCTION_ARN,
    HEADER_REQUEST_ID,
    HEADER_TRACE_ID,
    Client,
    RuntimeAPIError,
    new_client,
    parse_deadline,
    parse_invocation,
)


def test_parse_deadline_known_value():
    got = parse_deadline({HEADER_DEADLINE_MS: "1700000000000"})
    assert got == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


def test_parse_deadline_missing_header():
    assert parse_deadline({}) is None


def test_parse_deadline_invalid_value():
    assert parse_deadline({HEADER_DEADLINE_MS: "soon"}) is None


def test_parse_deadline_case_insensitive():
    got = parse_deadline([("lambda-runtime-deadline-ms", "1500")])
    assert got == datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=timezone.utc)


def test_parse_invocation_error_status():
    with pytest.raises(RuntimeAPIError, match="invocation/next failed: 500"):
        parse_invocation(500, "Internal Server Error", {}, b"boom")


def test_parse_invocation_success():
    payload = b'{"hello":"world"}'
    headers = {
        HEADER_REQUEST_ID: "req-123",
        HEADER_INVOKED_FUNCTION_ARN: "arn:aws:lambda:us-east-1:123:function:test",
        HEADER_DEADLINE_MS: "1700000000000",
        HEADER_TRACE_ID: "Root=1-abc;Parent=def;Sampled=1",
        HEADER_COGNITO_IDENTITY: "{}",
        HEADER_CLIENT_CONTEXT: "{}",
    }
    inv = parse_invocation(200, "OK", headers, payload)
    assert inv.request_id == "req-123"
    assert inv.invoked_function_arn == "arn:aws:lambda:us-east-1:123:function:test"
    assert inv.deadline is not None and inv.deadline.year == 2023
    assert inv.trace_id == "Root=1-abc;Parent=def;Sampled=1"
    assert inv.cognito_identity == "{}"
    assert inv.client_context == "{}"
    assert inv.payload == payload
    assert inv.headers[HEADER_REQUEST_ID] == "req-123"


def test_new_client_requires_environment(monkeypatch):
    monkeypatch.delenv("AWS_LAMBDA_RUNTIME_API", raising=False)
    with pytest.raises(RuntimeAPIError, match="AWS_LAMBDA_RUNTIME_API"):
        new_client()


def test_new_client_builds_urls(monkeypatch):
    monkeypatch.setenv("AWS_LAMBDA_RUNTIME_API", "127.0.0.1:9001")
    client = new_client()
    assert client.base_url == "http://127.0.0.1:9001/2018-06-01/runtime"
    assert client.next_url == "http://127.0.0.1:9001/2018-06-01/runtime/invocation/next"
    assert client.init_error_url == "http://127.0.0.1:9001/2018-06-01/runtime/init/error"


def test_empty_request_id_rejected():
    client = Client("127.0.0.1:9001")
    with pytest.raises(ValueError):
        client.response("", b"{}")
    with pytest.raises(ValueError):
        client.error("", b"{}")


class _RuntimeHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_GET(self):
        status, headers, body = self.server.next_reply
        self.send_response(status)
        for name, value in headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_POST(self):
        length = int(self.headers.get("Content-Length", "0"))
        body = self.rfile.read(length)
        self.server.posts.append((self.path, body, self.headers.get("Content-Type")))
        reply = b"rejected" if self.server.post_status >= 300 else b""
        self.send_response(self.server.post_status)
        self.send_header("Content-Length", str(len(reply)))
        self.end_headers()
        self.wfile.write(reply)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def runtime_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _RuntimeHandler)
    server.next_reply = (200, {}, b"")
    server.posts = []
    server.post_status = 202
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()
        thread.join()


def _client_for(server):
    host, port = server.server_address[:2]
    return Client(f"{host}:{port}")


def test_next_fetches_invocation(runtime_server):
    runtime_server.next_reply = (
        200,
        {HEADER_REQUEST_ID: "req-9", HEADER_DEADLINE_MS: "1700000000000"},
        b'{"input":"x"}',
    )
    with _client_for(runtime_server) as client:
        inv = client.next()
    assert inv.request_id == "req-9"
    assert inv.payload == b'{"input":"x"}'
    assert inv.deadline == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


def test_next_error_status(runtime_server):
    runtime_server.next_reply = (500, {}, b"boom")
    with _client_for(runtime_server) as client:
        with pytest.raises(RuntimeAPIError, match="boom"):
            client.next()


def test_response_error_and_init_error_paths(runtime_server):
    with _client_for(runtime_server) as client:
        client.response("req-1", b'{"ok":true}')
        client.error("req-2", b'{"errorMessage":"bad"}')
        client.init_error(b'{"errorType":"InitError"}')
    paths = [path for path, _, _ in runtime_server.posts]
    assert paths == [
        "/2018-06-01/runtime/invocation/req-1/response",
        "/2018-06-01/runtime/invocation/req-2/error",
        "/2018-06-01/runtime/init/error",
    ]
    assert runtime_server.posts[0][1] == b'{"ok":true}'
    assert runtime_server.posts[0][2] == "application/json; charset=utf-8"


def test_post_failure_status_raises(runtime_server):
    runtime_server.post_status = 400
    with _client_for(runtime_server) as client:
        with pytest.raises(RuntimeAPIError, match="failed: 400"):
            client.response("req-1", b"{}")


def test_unreachable_endpoint_raises():
    client = Client("127.0.0.1:1")
    with pytest.raises(RuntimeAPIError, match="HTTP request failed"):
        client.init_error(b"{}")