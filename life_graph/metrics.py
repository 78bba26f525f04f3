"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Dict, List, Tuple

PREFIX = "life_graph"


class _Histogram:
    """Cumulative-bucket histogram keyed by one label value."""

    def __init__(self, buckets: Tuple[float, ...]) -> None:
        self.buckets = buckets
        self.counts: Dict[str, List[int]] = {}
        self.sums: Dict[str, float] = defaultdict(float)
        self.totals: Dict[str, int] = defaultdict(int)

    def observe(self, key: str, value: float) -> None:
        counts = self.counts.setdefault(key, [0] * len(self.buckets))
        for idx, upper_bound in enumerate(self.buckets):
            if value <= upper_bound:
                counts[idx] += 1
        self.sums[key] += value
        self.totals[key] += 1

    def copy(self) -> Dict[str, Any]:
        return {
            "counts": {k: list(v) for k, v in self.counts.items()},
            "sums": dict(self.sums),
            "totals": dict(self.totals),
        }


class MetricsCollector:
    """Thread-safe collector for HTTP and pipeline instrumentation."""

    REQUEST_DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
    TRIAGE_DURATION_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        """Reset all metrics (used by tests)."""
        with self._lock:
            # Counters
            self._requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
            self._tasks_total: Dict[Tuple[str, str], int] = defaultdict(int)
            self._triage_calls_total: Dict[str, int] = defaultdict(int)
            self._plans_rejected_total: int = 0
            # Histograms
            self._request_duration = _Histogram(self.REQUEST_DURATION_BUCKETS)
            self._triage_duration = _Histogram(self.TRIAGE_DURATION_BUCKETS)
            # Gauges
            self._entities_total: int = 0
            self._relationships_total: int = 0

    def record_request(self, method: str, path: str, status: int, duration_seconds: float) -> None:
        """Record request counter and latency histogram observation."""
        path_norm = path or "/"
        with self._lock:
            self._requests_total[((method or "GET").upper(), path_norm, str(status))] += 1
            self._request_duration.observe(path_norm, max(0.0, float(duration_seconds)))

    def record_task(self, extractor: str, outcome: str) -> None:
        """One task finished: outcome is ``ok``, ``failed`` or ``fallback``."""
        with self._lock:
            self._tasks_total[(str(extractor), str(outcome))] += 1

    def record_triage(self, outcome: str, duration_seconds: float) -> None:
        with self._lock:
            self._triage_calls_total[str(outcome)] += 1
            self._triage_duration.observe("all", max(0.0, float(duration_seconds)))

    def inc_plan_rejected(self) -> None:
        with self._lock:
            self._plans_rejected_total += 1

    def set_store_gauges(self, *, entities_total: int, relationships_total: int) -> None:
        with self._lock:
            self._entities_total = max(0, int(entities_total))
            self._relationships_total = max(0, int(relationships_total))

    def snapshot(self) -> Dict[str, Any]:
        """Take an immutable snapshot for exposition."""
        with self._lock:
            return {
                "requests_total": dict(self._requests_total),
                "request_duration": self._request_duration.copy(),
                "tasks_total": dict(self._tasks_total),
                "triage_calls_total": dict(self._triage_calls_total),
                "triage_duration": self._triage_duration.copy(),
                "plans_rejected_total": int(self._plans_rejected_total),
                "entities_total": int(self._entities_total),
                "relationships_total": int(self._relationships_total),
            }

    def render_prometheus(self) -> str:
        """Render snapshot in Prometheus exposition format (text/plain)."""
        snap = self.snapshot()
        lines: List[str] = []

        _header(lines, "requests_total", "counter", "Total HTTP requests processed.")
        for (method, path, status), count in sorted(snap["requests_total"].items()):
            lines.append(
                f"{PREFIX}_requests_total"
                f'{{method="{_label_escape(method)}",path="{_label_escape(path)}",status="{_label_escape(status)}"}} '
                f"{int(count)}"
            )

        _header(lines, "request_duration_seconds", "histogram", "HTTP request latency in seconds.")
        _render_histogram(lines, "request_duration_seconds", "path",
                          self.REQUEST_DURATION_BUCKETS, snap["request_duration"])

        _header(lines, "tasks_total", "counter", "Plan tasks executed, by extractor and outcome.")
        for (extractor, outcome), count in sorted(snap["tasks_total"].items()):
            lines.append(
                f"{PREFIX}_tasks_total"
                f'{{extractor="{_label_escape(extractor)}",outcome="{_label_escape(outcome)}"}} '
                f"{int(count)}"
            )

        _header(lines, "triage_calls_total", "counter", "Triage collaborator calls, by outcome.")
        for outcome, count in sorted(snap["triage_calls_total"].items()):
            lines.append(f'{PREFIX}_triage_calls_total{{outcome="{_label_escape(outcome)}"}} {int(count)}')

        _header(lines, "triage_duration_seconds", "histogram", "Triage call latency in seconds, retries included.")
        _render_histogram(lines, "triage_duration_seconds", "scope",
                          self.TRIAGE_DURATION_BUCKETS, snap["triage_duration"])

        _header(lines, "plans_rejected_total", "counter", "Triage plans rejected as invalid.")
        lines.append(f"{PREFIX}_plans_rejected_total {snap['plans_rejected_total']}")

        _header(lines, "entities_total", "gauge", "Entities stored.")
        lines.append(f"{PREFIX}_entities_total {snap['entities_total']}")

        _header(lines, "relationships_total", "gauge", "Relationship edges stored.")
        lines.append(f"{PREFIX}_relationships_total {snap['relationships_total']}")

        return "\n".join(lines) + "\n"


collector = MetricsCollector()


def record_request_metric(*, method: str, path: str, status: int, duration_seconds: float) -> None:
    collector.record_request(method=method, path=path, status=status, duration_seconds=duration_seconds)


def record_task_outcome(extractor: str, outcome: str) -> None:
    collector.record_task(extractor, outcome)


def record_triage_call(outcome: str, duration_seconds: float) -> None:
    collector.record_triage(outcome, duration_seconds)


def record_plan_rejected() -> None:
    collector.inc_plan_rejected()


def set_store_gauges(*, entities_total: int, relationships_total: int) -> None:
    collector.set_store_gauges(entities_total=entities_total, relationships_total=relationships_total)


def render_prometheus_metrics() -> str:
    return collector.render_prometheus()


def reset_metrics() -> None:
    collector.reset()


def _header(lines: List[str], name: str, kind: str, help_text: str) -> None:
    lines.append(f"# HELP {PREFIX}_{name} {help_text}")
    lines.append(f"# TYPE {PREFIX}_{name} {kind}")


def _render_histogram(lines: List[str], name: str, label: str,
                      buckets: Tuple[float, ...], data: Dict[str, Any]) -> None:
    for key in sorted(data["counts"]):
        key_label = _label_escape(key)
        for upper_bound, value in zip(buckets, data["counts"][key]):
            lines.append(
                f'{PREFIX}_{name}_bucket{{{label}="{key_label}",le="{_format_bucket(upper_bound)}"}} {int(value)}'
            )
        total = int(data["totals"].get(key, 0))
        lines.append(f'{PREFIX}_{name}_bucket{{{label}="{key_label}",le="+Inf"}} {total}')
        lines.append(f'{PREFIX}_{name}_sum{{{label}="{key_label}"}} {_format_float(data["sums"].get(key, 0.0))}')
        lines.append(f'{PREFIX}_{name}_count{{{label}="{key_label}"}} {total}')


def _label_escape(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_bucket(value: float) -> str:
    return f"{float(value):g}"


def _format_float(value: float) -> str:
    text = f"{float(value):.9f}".rstrip("0").rstrip(".")
    return text if text else "0"
