"""Request count and duration metrics collected by a WSGI middleware.

Path variables in route templates are replaced with ``-`` so that metrics
for ``/clusters/123`` and ``/clusters/456`` accumulate together.
"""

from __future__ import annotations

import math
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

PATH_VAR_SUB = "-"
METRICS_SUBSYSTEM = "api_inbound"

METRICS_METHOD_LABEL = "method"
METRICS_PATH_LABEL = "path"
METRICS_CODE_LABEL = "code"
METRICS_LABELS = (METRICS_METHOD_LABEL, METRICS_PATH_LABEL, METRICS_CODE_LABEL)

REQUEST_COUNT = "request_count"
REQUEST_DURATION = "request_duration"
METRICS_NAMES = (REQUEST_COUNT, REQUEST_DURATION)

DURATION_BUCKETS = (0.1, 1.0, 10.0, 30.0)

_COUNT_NAME = f"{METRICS_SUBSYSTEM}_{REQUEST_COUNT}"
_DURATION_NAME = f"{METRICS_SUBSYSTEM}_{REQUEST_DURATION}"

_PATH_VAR_RE = re.compile(r"{[^}]*}")


def normalize_path(template: str | None) -> str:
    """Replace the variables of a route template; unknown routes become ``/-``."""
    if template is None:
        return "/" + PATH_VAR_SUB
    return _PATH_VAR_RE.sub(PATH_VAR_SUB, template)


@dataclass
class _Series:
    count: int = 0
    total: float = 0.0
    buckets: list[int] = field(default_factory=lambda: [0] * len(DURATION_BUCKETS))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_number(value: float) -> str:
    if math.isinf(value):
        return "+Inf"
    return format(value, "g") if value != int(value) else str(int(value))


class RequestMetrics:
    """Thread-safe counter and histogram keyed by method, path and code."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._series: dict[tuple[str, str, str], _Series] = {}

    def observe(self, method, path, code, seconds) -> None:
        key = (method, path, str(code))
        with self._lock:
            series = self._series.setdefault(key, _Series())
            series.count += 1
            series.total += seconds
            for index, bound in enumerate(DURATION_BUCKETS):
                if seconds <= bound:
                    series.buckets[index] += 1

    def count(self, method, path, code) -> int:
        with self._lock:
            series = self._series.get((method, path, str(code)))
            return series.count if series else 0

    def bucket_counts(self, method, path, code) -> dict[float, int]:
        """Cumulative counts per upper bound, ending with infinity."""
        with self._lock:
            series = self._series.get((method, path, str(code))) or _Series()
            counts = dict(zip(DURATION_BUCKETS, series.buckets))
            counts[math.inf] = series.count
            return counts

    def reset(self) -> None:
        with self._lock:
            self._series.clear()

    def render(self) -> str:
        """Render the metrics in the Prometheus text exposition format."""
        with self._lock:
            snapshot = sorted(
                (key, _Series(s.count, s.total, list(s.buckets))) for key, s in self._series.items()
            )
        lines = [
            f"# HELP {_COUNT_NAME} Number of requests served.",
            f"# TYPE {_COUNT_NAME} counter",
        ]
        for (method, path, code), series in snapshot:
            lines.append(f"{_COUNT_NAME}{{{self._labels(method, path, code)}}} {series.count}")
        lines.append(f"# HELP {_DURATION_NAME} Request duration in seconds.")
        lines.append(f"# TYPE {_DURATION_NAME} histogram")
        for (method, path, code), series in snapshot:
            labels = self._labels(method, path, code)
            bounds = list(zip(DURATION_BUCKETS, series.buckets)) + [(math.inf, series.count)]
            for bound, value in bounds:
                lines.append(f'{_DURATION_NAME}_bucket{{{labels},le="{_format_number(bound)}"}} {value}')
            lines.append(f"{_DURATION_NAME}_sum{{{labels}}} {series.total!r}")
            lines.append(f"{_DURATION_NAME}_count{{{labels}}} {series.count}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _labels(method: str, path: str, code: str) -> str:
        return (
            f'{METRICS_CODE_LABEL}="{_escape(code)}",'
            f'{METRICS_METHOD_LABEL}="{_escape(method)}",'
            f'{METRICS_PATH_LABEL}="{_escape(path)}"'
        )


class _MeasuredResponse:
    def __init__(self, result: Iterable[bytes], on_done: Callable[[], None]) -> None:
        self._result = result
        self._on_done = on_done
        self._done = False

    def __iter__(self) -> Iterator[bytes]:
        yield from self._result

    def close(self) -> None:
        try:
            close = getattr(self._result, "close", None)
            if close is not None:
                close()
        finally:
            if not self._done:
                self._done = True
                self._on_done()


def metrics_middleware(app, metrics, route_template=None):
    """Wrap a WSGI app so each request is counted and timed.

    ``route_template`` maps an environ to the matched route template, or
    ``None`` when no route matched.
    """

    def middleware(environ, start_response):
        state = {"code": 0}

        def recording_start_response(status, headers, exc_info=None):
            state["code"] = int(status.split(" ", 1)[0])
            return start_response(status, headers, exc_info)

        before = time.perf_counter()
        result = app(environ, recording_start_response)

        def done() -> None:
            elapsed = time.perf_counter() - before
            template = route_template(environ) if route_template is not None else None
            metrics.observe(
                environ.get("REQUEST_METHOD", ""),
                normalize_path(template),
                state["code"],
                elapsed,
            )

        return _MeasuredResponse(result, done)

    return middleware