"""Request/response logging for WSGI applications, formatted as JSON."""

from __future__ import annotations

import io
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Protocol
from urllib.parse import quote

LOGGING_THRESHOLD = 1

# Paths that add a lot of log noise without being useful.
QUIET_PATHS = frozenset({"/api/rh-trex"})

_LOG = logging.getLogger(__name__)


@dataclass
class ResponseInfo:
    """What is known about a response once it has been sent."""

    header: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    status: int = 0
    elapsed: str = ""


class LogFormatter(Protocol):
    def format_request_log(self, environ: dict) -> str: ...

    def format_response_log(self, info: ResponseInfo) -> str: ...


def request_uri(environ: dict) -> str:
    """Rebuild the request URI (path and query) from a WSGI environ."""
    path = quote(environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", ""), safe="/;=,:@!$&'()*+~")
    query = environ.get("QUERY_STRING", "")
    return f"{path}?{query}" if query else path


def _request_headers(environ: dict) -> dict[str, list[str]]:
    headers: dict[str, list[str]] = {}
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            name = key[5:]
        elif key in ("CONTENT_TYPE", "CONTENT_LENGTH"):
            name = key
        else:
            continue
        if value == "":
            continue
        canonical = "-".join(part.capitalize() for part in name.split("_"))
        headers.setdefault(canonical, []).append(value)
    return headers


def _peek_body(environ: dict) -> bytes:
    """Read the request body and put it back so the application still sees it."""
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    stream = environ.get("wsgi.input")
    if length <= 0 or stream is None:
        return b""
    data = stream.read(length)
    environ["wsgi.input"] = io.BytesIO(data)
    return data


def format_duration(seconds: float) -> str:
    """Render a duration with the largest unit that keeps it above one."""
    nanos = round(seconds * 1e9)
    if nanos < 1000:
        return f"{nanos}ns"
    for unit, scale in (("µs", 1e3), ("ms", 1e6)):
        if nanos < scale * 1000:
            return f"{_trim(nanos / scale)}{unit}"
    return f"{_trim(nanos / 1e9)}s"


def _trim(value: float) -> str:
    return f"{value:.6f}".rstrip("0").rstrip(".")


class JSONLogFormatter:
    """Formats requests and responses as one-line JSON documents.

    With ``verbose`` set, headers and bodies are included as well.
    """

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose

    def format_request_log(self, environ: dict) -> str:
        entry: dict[str, object] = {
            "request_method": environ.get("REQUEST_METHOD", ""),
            "request_url": request_uri(environ),
        }
        if self.verbose:
            headers = _request_headers(environ)
            if headers:
                entry["request_header"] = headers
            body = _peek_body(environ)
            if body:
                entry["request_body"] = body.decode("utf-8", "replace")
        remote = environ.get("REMOTE_ADDR", "")
        if remote:
            entry["request_remote_ip"] = remote
        return json.dumps(entry)

    def format_response_log(self, info: ResponseInfo) -> str:
        entry: dict[str, object] = {}
        if info.status:
            entry["response_status"] = info.status
        if self.verbose and info.body:
            entry["response_body"] = info.body.decode("utf-8", "replace")
        if info.elapsed:
            entry["elapsed"] = info.elapsed
        return json.dumps(entry)


def _emit(log: logging.Logger, produce: Callable[[], str]) -> None:
    try:
        message = produce()
    except Exception as exc:  # a formatter failure must never break the request
        log.error("Unable to format request/response for log.", extra={"error": str(exc)})
        return
    log.info(message)


class _LoggedResponse:
    """Iterates the wrapped response, recording it, and logs once closed."""

    def __init__(self, result: Iterable[bytes], on_done: Callable[[bytes], None]) -> None:
        self._result = result
        self._on_done = on_done
        self._chunks: list[bytes] = []
        self._done = False

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._result:
            self._chunks.append(chunk)
            yield chunk

    def close(self) -> None:
        try:
            close = getattr(self._result, "close", None)
            if close is not None:
                close()
        finally:
            if not self._done:
                self._done = True
                self._on_done(b"".join(self._chunks))


def request_logging_middleware(app, formatter=None, logger=None):
    """Wrap a WSGI app so each request and its response are logged."""
    formatter = formatter if formatter is not None else JSONLogFormatter()
    log = logger if logger is not None else _LOG

    def middleware(environ, start_response):
        path = environ.get("PATH_INFO", "")
        if path.endswith("/"):
            path = path[:-1]
        do_log = path not in QUIET_PATHS

        if do_log:
            _emit(log, lambda: formatter.format_request_log(environ))

        response = ResponseInfo()

        def capturing_start_response(status, headers, exc_info=None):
            response.status = int(status.split(" ", 1)[0])
            response.header = list(headers)
            return start_response(status, headers, exc_info)

        before = time.perf_counter()
        result = app(environ, capturing_start_response)

        def done(body: bytes) -> None:
            if not do_log:
                return
            response.body = body
            response.elapsed = format_duration(time.perf_counter() - before)
            _emit(log, lambda: formatter.format_response_log(response))

        return _LoggedResponse(result, done)

    return middleware