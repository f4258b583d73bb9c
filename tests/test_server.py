import json
import threading
import time
import urllib.request

import pytest

from trexsvc.metrics import RequestMetrics
from trexsvc.server import (
    HealthCheckServer,
    MetricsServer,
    ServerClosedError,
    StatusUpdater,
    check,
    remove_trailing_slash,
)


def run(app, path="/", method="GET"):
    environ = {"PATH_INFO": path, "REQUEST_METHOD": method}
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b"".join(app(environ, start_response))
    return captured["status"], captured["headers"], body


def echo_path(environ, start_response):
    start_response("200 OK", [])
    return [environ["PATH_INFO"].encode()]


@pytest.mark.parametrize("path, seen", [("/a/", "/a"), ("/a//", "/a/"), ("/a", "/a")])
def test_remove_trailing_slash(path, seen):
    _, _, body = run(remove_trailing_slash(echo_path), path)
    assert body == seen.encode()


def test_check_ignores_none_and_closed_server():
    assert check(None, "message") is None
    assert check(ServerClosedError(), "message") is None


def test_check_exits_on_error():
    with pytest.raises(SystemExit) as info:
        check(ValueError("boom"), "message")
    assert info.value.code == 1


def test_status_updater_round_trip():
    updater = StatusUpdater()
    assert updater.status() is None
    error = RuntimeError("down")
    updater.update(error)
    assert updater.status() is error
    updater.update(None)
    assert updater.status() is None


def test_healthcheck_maintenance_cycle():
    server = HealthCheckServer("127.0.0.1:0")
    status, headers, body = run(server, "/healthcheck")
    assert status.startswith("200")
    assert json.loads(body) == {}
    assert headers["Content-Type"] == "application/json"

    status, _, _ = run(server, "/healthcheck/down", "POST")
    assert status.startswith("200")
    status, _, body = run(server, "/healthcheck")
    assert status.startswith("503")
    assert json.loads(body) == {"maintenance_status": "maintenance mode"}

    run(server, "/healthcheck/up", "POST")
    status, _, body = run(server, "/healthcheck")
    assert status.startswith("200")
    assert json.loads(body) == {}


def test_healthcheck_rejects_wrong_method_and_path():
    server = HealthCheckServer("127.0.0.1:0")
    assert run(server, "/healthcheck/down", "GET")[0].startswith("405")
    assert run(server, "/healthcheck", "POST")[0].startswith("405")
    assert run(server, "/nowhere")[0].startswith("404")


def test_metrics_server_exposes_metrics():
    metrics = RequestMetrics()
    metrics.observe("GET", "/things/-", 200, 0.5)
    server = MetricsServer("127.0.0.1:0", metrics)
    status, _, body = run(server, "/metrics")
    assert status.startswith("200")
    assert 'api_inbound_request_count{code="200",method="GET",path="/things/-"} 1' in body.decode()
    assert run(server, "/other")[0].startswith("404")


@pytest.mark.parametrize("server_class", [HealthCheckServer, MetricsServer])
def test_https_without_files_exits(server_class):
    server = server_class("127.0.0.1:0", enable_https=True)
    with pytest.raises(SystemExit) as info:
        server.start()
    assert info.value.code == 1


def test_health_server_serves_and_stops():
    server = HealthCheckServer("127.0.0.1:0")
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()
    deadline = time.monotonic() + 5
    while server.address is None and time.monotonic() < deadline:
        time.sleep(0.01)
    host, port = server.address
    with urllib.request.urlopen(f"http://{host}:{port}/healthcheck", timeout=5) as response:
        assert response.status == 200
        assert response.read() == b"{}"
    server.stop()
    thread.join(5)
    assert not thread.is_alive()
    assert server.address is None