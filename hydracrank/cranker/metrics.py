"""Prometheus-style metrics for the cranker and a ``/metrics`` HTTP endpoint.

All metrics are namespaced ``hydra_cranker_*`` and rendered in the
Prometheus text exposition format.
"""

from __future__ import annotations

import logging
import math
import threading
from contextlib import contextmanager
from functools import lru_cache
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from time import perf_counter
from typing import Iterator, Sequence

logger = logging.getLogger(__name__)

NAMESPACE = "hydra_cranker"

#: Content type of the text exposition format.
CONTENT_TYPE = "text/plain; version=0.0.4"

#: Fine-grained buckets aimed at the healthy sub-10 ms sweep range.
SWEEP_BUCKETS: tuple[float, ...] = (
    0.0001,
    0.0005,
    0.001,
    0.0025,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.5,
    1.0,
    5.0,
)

_Sample = tuple[str, tuple[tuple[str, str], ...], float]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_value(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    if value == math.inf:
        return "+Inf"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _format_labels(pairs: Sequence[tuple[str, str]]) -> str:
    if not pairs:
        return ""
    inner = ",".join(f'{key}="{_escape(value)}"' for key, value in pairs)
    return "{" + inner + "}"


class Counter:
    """A monotonically increasing integer."""

    kind = "counter"

    def __init__(self, name: str = "", documentation: str = "") -> None:
        self.name = name
        self.documentation = documentation
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        """Add ``amount``, which must not be negative."""
        if amount < 0:
            raise ValueError("counters can only increase")
        with self._lock:
            self._value += amount

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def _samples(self) -> Iterator[_Sample]:
        yield self.name, (), self.value


class CounterVec:
    """A family of counters told apart by label values."""

    kind = "counter"

    def __init__(self, name: str, documentation: str, label_names: Sequence[str]) -> None:
        self.name = name
        self.documentation = documentation
        self.label_names = tuple(label_names)
        self._children: dict[tuple[str, ...], Counter] = {}
        self._lock = threading.Lock()

    def labels(self, *args: str) -> Counter:
        """The counter for these label values, created at zero on first use."""
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.name} takes {len(self.label_names)} label value(s), got {len(args)}"
            )
        key = tuple(str(arg) for arg in args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._children[key] = Counter(self.name, self.documentation)
            return child

    def _samples(self) -> Iterator[_Sample]:
        with self._lock:
            children = sorted(self._children.items())
        for values, child in children:
            yield self.name, tuple(zip(self.label_names, values)), child.value


class Gauge:
    """An integer that can be set to any value."""

    kind = "gauge"

    def __init__(self, name: str = "", documentation: str = "") -> None:
        self.name = name
        self.documentation = documentation
        self._value = 0
        self._lock = threading.Lock()

    def set(self, value: int) -> None:
        with self._lock:
            self._value = int(value)

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def _samples(self) -> Iterator[_Sample]:
        yield self.name, (), self.value


class Histogram:
    """Observations counted into cumulative buckets."""

    kind = "histogram"

    def __init__(
        self, name: str = "", documentation: str = "", buckets: Sequence[float] = SWEEP_BUCKETS
    ) -> None:
        bounds = sorted(float(bound) for bound in buckets)
        if not bounds or len(set(bounds)) != len(bounds):
            raise ValueError("histogram buckets must be distinct and non-empty")
        self.name = name
        self.documentation = documentation
        self._bounds = tuple(bound for bound in bounds if bound != math.inf)
        self._counts = [0] * len(self._bounds)
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        """Record one observation."""
        with self._lock:
            for index, bound in enumerate(self._bounds):
                if value <= bound:
                    self._counts[index] += 1
            self._sum += value
            self._count += 1

    @contextmanager
    def time(self) -> Iterator[None]:
        """Observe the wall time spent inside the ``with`` block."""
        start = perf_counter()
        try:
            yield
        finally:
            self.observe(perf_counter() - start)

    @property
    def buckets(self) -> tuple[tuple[float, int], ...]:
        """``(upper_bound, cumulative_count)`` pairs, excluding ``+Inf``."""
        with self._lock:
            return tuple(zip(self._bounds, self._counts))

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def _samples(self) -> Iterator[_Sample]:
        with self._lock:
            counts = list(zip(self._bounds, self._counts))
            total, count = self._sum, self._count
        for bound, cumulative in counts:
            yield f"{self.name}_bucket", (("le", _format_value(bound)),), cumulative
        yield f"{self.name}_bucket", (("le", "+Inf"),), count
        yield f"{self.name}_sum", (), total
        yield f"{self.name}_count", (), count


def _name(short: str) -> str:
    return f"{NAMESPACE}_{short}"


class Metrics:
    """Every metric the cranker exports."""

    def __init__(self) -> None:
        #: Cranks currently in the in-memory cache.
        self.cranks_cached = Gauge(
            _name("cranks_cached"), "Number of cranks currently held in the in-memory cache."
        )
        #: Last slot observed from the slot subscription.
        self.current_slot = Gauge(
            _name("current_slot"), "Last slot observed from `slotSubscribe`."
        )
        self.triggers_submitted_total = CounterVec(
            _name("triggers_submitted_total"),
            "Total triggers submitted, by outcome.",
            ["result"],
        )
        self.closes_submitted_total = CounterVec(
            _name("closes_submitted_total"),
            "Total permissionless Close txs submitted, by outcome.",
            ["result"],
        )
        self.ws_reconnects_total = CounterVec(
            _name("ws_reconnects_total"),
            "WebSocket (re)connect attempts, by source.",
            ["source"],
        )
        self.grpc_reconnects_total = CounterVec(
            _name("grpc_reconnects_total"),
            "Yellowstone gRPC (re)connect attempts, by source.",
            ["source"],
        )
        self.cache_events_total = CounterVec(
            _name("cache_events_total"),
            "programSubscribe-driven cache mutations, by kind.",
            ["kind"],
        )
        self.eligible_now = Gauge(
            _name("eligible_now"), "Cranks eligible to trigger on the most recent slot tick."
        )
        self.sweep_duration_seconds = Histogram(
            _name("sweep_duration_seconds"),
            "Wall time per slot-tick sweep (cache scan + fire triggers).",
            SWEEP_BUCKETS,
        )
        self.rpc_errors_total = CounterVec(
            _name("rpc_errors_total"), "RPC call errors, by failing operation.", ["op"]
        )

        # Materialise known series so rate() queries have data before the
        # first increment.
        for result in ("ok", "err"):
            self.triggers_submitted_total.labels(result).inc(0)
            self.closes_submitted_total.labels(result).inc(0)
        for source in ("program", "slot"):
            self.ws_reconnects_total.labels(source).inc(0)
            self.grpc_reconnects_total.labels(source).inc(0)
        for kind in ("insert", "update", "remove"):
            self.cache_events_total.labels(kind).inc(0)
        for op in ("get_program_accounts", "get_latest_blockhash", "send_transaction"):
            self.rpc_errors_total.labels(op).inc(0)

    def _families(self) -> list:
        return [
            self.cranks_cached,
            self.current_slot,
            self.triggers_submitted_total,
            self.closes_submitted_total,
            self.ws_reconnects_total,
            self.grpc_reconnects_total,
            self.cache_events_total,
            self.eligible_now,
            self.sweep_duration_seconds,
            self.rpc_errors_total,
        ]

    def render(self) -> str:
        """All metrics in the Prometheus text exposition format."""
        lines = []
        for family in sorted(self._families(), key=lambda metric: metric.name):
            lines.append(f"# HELP {family.name} {family.documentation}")
            lines.append(f"# TYPE {family.name} {family.kind}")
            for sample_name, labels, value in family._samples():
                lines.append(f"{sample_name}{_format_labels(labels)} {_format_value(value)}")
        return "\n".join(lines) + "\n"


@lru_cache(maxsize=None)
def metrics() -> Metrics:
    """The process-wide metrics instance."""
    return Metrics()


class _MetricsHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        body = metrics().render().encode()
        self.send_response(200)
        self.send_header("Content-Type", CONTENT_TYPE)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("metrics: " + format, *args)


def spawn_server(port: int) -> threading.Thread:
    """Serve the metrics over HTTP on ``0.0.0.0:port`` in a daemon thread.

    A bind failure is logged and ends the thread; the caller keeps running.
    """

    def serve() -> None:
        address = f"0.0.0.0:{port}"
        try:
            server = ThreadingHTTPServer(("0.0.0.0", port), _MetricsHandler)
        except OSError as err:
            logger.error("metrics: failed to bind %s: %s", address, err)
            return
        logger.info("metrics server listening on %s/metrics", address)
        with server:
            server.serve_forever(poll_interval=1.0)

    thread = threading.Thread(target=serve, name="metrics-server", daemon=True)
    thread.start()
    return thread