"""Prometheus text-format metrics for promotion runs, served on ``/metrics``."""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from threading import Lock, Thread
import time
from types import TracebackType
from typing import Generic, TypeVar

_Child = TypeVar("_Child")


@dataclass
class _CounterChild:
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class _HistogramChild:
    bounds: tuple[float, ...]
    buckets: list[int] = field(default_factory=list)
    count: int = 0
    total: float = 0.0

    def __post_init__(self) -> None:
        self.buckets = [0] * len(self.bounds)

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        index = bisect_left(self.bounds, value)
        if index < len(self.buckets):
            self.buckets[index] += 1

    def time(self) -> _Timer:
        return _Timer(self)


class _Family(Generic[_Child]):
    """A metric name plus one child per label combination."""

    kind = ""

    def __init__(self, name: str, description: str, label_names: tuple[str, ...]) -> None:
        self.name = name
        self.description = description
        self.label_names = label_names
        self._children: dict[tuple[str, ...], _Child] = {}
        self._lock = Lock()

    def _new_child(self) -> _Child:
        raise NotImplementedError

    def labels(self, **labels: str) -> _Child:
        if set(labels) != set(self.label_names):
            raise ValueError(f"{self.name} expects labels {self.label_names}, got {sorted(labels)}")
        key = tuple(str(labels[name]) for name in self.label_names)
        with self._lock:
            if key not in self._children:
                self._children[key] = self._new_child()
            return self._children[key]

    def _label_str(self, key: tuple[str, ...], **extra: str) -> str:
        pairs = list(zip(self.label_names, key)) + list(extra.items())
        return ",".join(f'{name}="{value}"' for name, value in pairs)

    def _samples(self, key: tuple[str, ...], child: _Child) -> list[str]:
        raise NotImplementedError

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]
        with self._lock:
            children = list(self._children.items())
        for key, child in children:
            lines.extend(self._samples(key, child))
        return lines


class Counter(_Family[_CounterChild]):
    kind = "counter"

    def _new_child(self) -> _CounterChild:
        return _CounterChild()

    def _samples(self, key: tuple[str, ...], child: _CounterChild) -> list[str]:
        return [f"{self.name}{{{self._label_str(key)}}} {child.value}"]


class Histogram(_Family[_HistogramChild]):
    kind = "histogram"

    def __init__(
        self,
        name: str,
        description: str,
        label_names: tuple[str, ...],
        buckets: tuple[float, ...],
    ) -> None:
        super().__init__(name, description, label_names)
        self.bounds = tuple(sorted(buckets))

    def _new_child(self) -> _HistogramChild:
        return _HistogramChild(self.bounds)

    def _samples(self, key: tuple[str, ...], child: _HistogramChild) -> list[str]:
        lines = []
        cumulative = 0
        for bound, hits in zip(self.bounds, child.buckets):
            cumulative += hits
            labels = self._label_str(key, le=str(bound))
            lines.append(f"{self.name}_bucket{{{labels}}} {cumulative}")
        lines.append(f"{self.name}_bucket{{{self._label_str(key, le='+Inf')}}} {child.count}")
        lines.append(f"{self.name}_count{{{self._label_str(key)}}} {child.count}")
        lines.append(f"{self.name}_sum{{{self._label_str(key)}}} {child.total}")
        return lines


PROMOTIONS = Counter(
    "kubepromote_promotions_total",
    "Promotion runs by outcome (done, aborted, suspended)",
    ("outcome",),
)

GATE_DECISIONS = Counter(
    "kubepromote_gate_decisions_total",
    "Gate decisions by environment and approver",
    ("environment", "approved_by", "approved"),
)

DEPLOY_DURATION = Histogram(
    "kubepromote_deploy_duration_seconds",
    "Time from workload apply to endpoint resolution",
    ("environment",),
    buckets=(1, 5, 15, 30, 60, 120, 300),
)

PROBE_DURATION = Histogram(
    "kubepromote_probe_duration_seconds",
    "Health probe duration including retries",
    ("metric",),
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30),
)

REGISTRY: tuple[Counter | Histogram, ...] = (
    PROMOTIONS,
    GATE_DECISIONS,
    DEPLOY_DURATION,
    PROBE_DURATION,
)


def render_metrics() -> str:
    lines: list[str] = []
    for family in REGISTRY:
        lines.extend(family.render())
    return "\n".join(lines) + "\n"


class _MetricsHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        if self.path != "/metrics":
            self.send_response(404)
            self.end_headers()
            return
        body = render_metrics().encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; version=0.0.4")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        return None


_server: HTTPServer | None = None


def start_metrics_server(port: int = 8005, host: str = "0.0.0.0") -> HTTPServer:
    """Serve ``/metrics`` from a daemon thread; later calls reuse the first server."""
    global _server
    if _server is None:
        _server = HTTPServer((host, port), _MetricsHandler)
        Thread(target=_server.serve_forever, daemon=True).start()
    return _server


class _Timer:
    def __init__(self, child: _HistogramChild) -> None:
        self._child = child
        self._start = 0.0

    def __enter__(self) -> _Timer:
        self._start = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._child.observe(time.perf_counter() - self._start)
