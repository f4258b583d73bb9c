"""Health check and metrics HTTP servers and shared server helpers."""

from __future__ import annotations

import json
import logging
import ssl
import threading
from socketserver import ThreadingMixIn
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from trexsvc.metrics import RequestMetrics

_LOG = logging.getLogger(__name__)

MISSING_TLS_FILES = "Unspecified required --https-cert-file, --https-key-file"


class ServerClosedError(Exception):
    """Raised when a server stops because it was asked to."""


def remove_trailing_slash(app):
    """Wrap a WSGI app so one trailing slash is stripped from the path."""

    def middleware(environ, start_response):
        path = environ.get("PATH_INFO", "")
        if path.endswith("/"):
            environ["PATH_INFO"] = path[:-1]
        return app(environ, start_response)

    return middleware


def check(error, message):
    """Exit the process with status 1 if ``error`` is a real failure."""
    if error is not None and not isinstance(error, ServerClosedError):
        _LOG.error("%s: %s", message, error)
        raise SystemExit(1)


class StatusUpdater:
    """Holds the current maintenance status: ``None`` means healthy."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._error: Exception | None = None

    def update(self, error) -> None:
        with self._lock:
            self._error = error

    def status(self):
        with self._lock:
            return self._error


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"invalid bind address: {address!r}")
    return host.strip("[]"), int(port)


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):  # noqa: A002 - signature is fixed
        _LOG.debug("%s - %s", self.address_string(), format % args)


def _respond(start_response, status: str, body: bytes, content_type: str = "text/plain; charset=utf-8"):
    start_response(status, [("Content-Type", content_type), ("Content-Length", str(len(body)))])
    return [body]


class _HTTPServer:
    """Runs a WSGI application on a bind address until stopped."""

    label = "HTTP"

    def __init__(self, bind_address, enable_https=False, cert_file="", key_file=""):
        self.bind_address = bind_address
        self.enable_https = enable_https
        self.cert_file = cert_file
        self.key_file = key_file
        self._httpd: WSGIServer | None = None

    @property
    def address(self):
        """The (host, port) actually bound while running, else ``None``."""
        httpd = self._httpd
        return tuple(httpd.server_address[:2]) if httpd is not None else None

    def _serve(self) -> None:
        """Serve this application until shut down; blocks the calling thread."""
        if self.enable_https and (not self.cert_file or not self.key_file):
            check(ValueError(MISSING_TLS_FILES), "Can't start https server")
        host, port = _split_address(self.bind_address)
        try:
            httpd = make_server(host, port, self, server_class=_ThreadingWSGIServer, handler_class=_QuietHandler)
        except OSError as exc:
            check(exc, f"{self.label} server terminated with errors")
            return
        try:
            if self.enable_https:
                context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
                context.load_cert_chain(self.cert_file, self.key_file)
                httpd.socket = context.wrap_socket(httpd.socket, server_side=True)
                _LOG.info("Serving %s with TLS at %s", self.label, self.bind_address)
            else:
                _LOG.info("Serving %s without TLS at %s", self.label, self.bind_address)
            self._httpd = httpd
            httpd.serve_forever()
        except (OSError, ssl.SSLError) as exc:
            check(exc, f"{self.label} server terminated with errors")
        finally:
            self._httpd = None
            httpd.server_close()
        _LOG.info("%s server terminated", self.label)

    def _shutdown(self) -> None:
        httpd = self._httpd
        if httpd is not None:
            httpd.shutdown()


class HealthCheckServer(_HTTPServer):
    """Reports health and lets operators toggle maintenance mode."""

    label = "HealthCheck"
    check_name = "maintenance_status"

    def __init__(self, bind_address, updater=None, enable_https=False, cert_file="", key_file=""):
        super().__init__(bind_address, enable_https, cert_file, key_file)
        self.updater = updater if updater is not None else StatusUpdater()

    def __call__(self, environ, start_response):
        path = environ.get("PATH_INFO", "")
        method = environ.get("REQUEST_METHOD", "GET")
        routes = {
            "/healthcheck": ("GET", self._status),
            "/healthcheck/down": ("POST", self._down),
            "/healthcheck/up": ("POST", self._up),
        }
        route = routes.get(path)
        if route is None:
            return _respond(start_response, "404 Not Found", b"404 page not found\n")
        allowed, handler = route
        if method != allowed:
            return _respond(start_response, "405 Method Not Allowed", b"")
        return handler(start_response)

    def start(self) -> None:
        """Serve health checks until :meth:`stop` is called; blocks."""
        self._serve()

    def stop(self) -> None:
        """Shut the running server down."""
        self._shutdown()

    def _status(self, start_response):
        error = self.updater.status()
        checks = {self.check_name: str(error)} if error is not None else {}
        status = "503 Service Unavailable" if checks else "200 OK"
        return _respond(start_response, status, json.dumps(checks).encode(), "application/json")

    def _down(self, start_response):
        self.updater.update(RuntimeError("maintenance mode"))
        return _respond(start_response, "200 OK", b"")

    def _up(self, start_response):
        self.updater.update(None)
        return _respond(start_response, "200 OK", b"")


class MetricsServer(_HTTPServer):
    """Exposes collected request metrics at ``/metrics``."""

    label = "Metrics"

    def __init__(self, bind_address, metrics=None, enable_https=False, cert_file="", key_file=""):
        super().__init__(bind_address, enable_https, cert_file, key_file)
        self.metrics = metrics if metrics is not None else RequestMetrics()

    def __call__(self, environ, start_response):
        if environ.get("PATH_INFO", "") != "/metrics":
            return _respond(start_response, "404 Not Found", b"404 page not found\n")
        body = self.metrics.render().encode()
        return _respond(start_response, "200 OK", body, "text/plain; version=0.0.4; charset=utf-8")

    def start(self) -> None:
        """Serve metrics until :meth:`stop` is called; blocks."""
        self._serve()

    def stop(self) -> None:
        """Shut the running server down."""
        self._shutdown()