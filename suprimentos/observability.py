from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)
_REMOTE_CALL_BUCKETS_MS = (10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0, 30000.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests_total = 0
        self._errors_total = 0
        self._by_route: Dict[str, Dict[str, float]] = {}
        self._http_request_total: Dict[tuple[str, str, str], int] = {}

        self._quotation_send_total: Dict[str, int] = {}
        self._reconciliation_passes_total: Dict[str, int] = {}
        self._reconciliation_updates_total = 0
        self._duplicates_removed_total = 0
        self._notifications_total: Dict[str, int] = {}
        self._domain_event_emitted_total: Dict[str, int] = {}
        self._remote_call_duration_ms: Dict[str, dict] = {}
        self._remote_call_failed_total: Dict[str, int] = {}

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float, limits: tuple[float, ...]) -> None:
        duration = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += duration
        for limit in limits:
            if duration <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    @staticmethod
    def _increment(bucket: Dict, key, amount: int = 1) -> None:
        bucket[key] = int(bucket.get(key, 0)) + amount

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        status_key = str(int(status_code))

        key = f"{method_key} {route_key}"
        with self._lock:
            bucket = self._by_route.setdefault(
                key,
                {
                    "requests": 0.0,
                    "errors": 0.0,
                    "latency_sum_ms": 0.0,
                    "latency_max_ms": 0.0,
                },
            )
            bucket["requests"] += 1
            bucket["latency_sum_ms"] += max(0.0, float(duration_ms))
            bucket["latency_max_ms"] = max(bucket["latency_max_ms"], max(0.0, float(duration_ms)))
            self._requests_total += 1
            if int(status_code) >= 400:
                bucket["errors"] += 1
                self._errors_total += 1
            self._increment(self._http_request_total, (method_key, route_key, status_key))

    def observe_quotation_send(self, result: str) -> None:
        key = str(result or "unknown").strip() or "unknown"
        with self._lock:
            self._increment(self._quotation_send_total, key)

    def observe_reconciliation_pass(self, source: str, updated: int) -> None:
        key = str(source or "unknown").strip() or "unknown"
        with self._lock:
            self._increment(self._reconciliation_passes_total, key)
            self._reconciliation_updates_total += max(0, int(updated or 0))

    def observe_duplicates_removed(self, count: int) -> None:
        increment = max(0, int(count or 0))
        if increment <= 0:
            return
        with self._lock:
            self._duplicates_removed_total += increment

    def observe_notification(self, kind: str) -> None:
        key = str(kind or "unknown").strip() or "unknown"
        with self._lock:
            self._increment(self._notifications_total, key)

    def observe_domain_event_emitted(self, event_type: str) -> None:
        key = str(event_type or "unknown").strip() or "unknown"
        with self._lock:
            self._increment(self._domain_event_emitted_total, key)

    def observe_remote_call(self, target: str, duration_ms: float, failed: bool = False) -> None:
        key = str(target or "unknown").strip() or "unknown"
        with self._lock:
            histogram = self._remote_call_duration_ms.setdefault(
                key,
                self._new_histogram_state(_REMOTE_CALL_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _REMOTE_CALL_BUCKETS_MS)
            if failed:
                self._increment(self._remote_call_failed_total, key)

    def snapshot(self) -> dict:
        with self._lock:
            route_stats = []
            for route, bucket in self._by_route.items():
                requests_count = int(bucket["requests"])
                avg_ms = 0.0
                if requests_count > 0:
                    avg_ms = float(bucket["latency_sum_ms"]) / requests_count
                route_stats.append(
                    {
                        "route": route,
                        "requests": requests_count,
                        "errors": int(bucket["errors"]),
                        "avg_latency_ms": round(avg_ms, 2),
                        "max_latency_ms": round(float(bucket["latency_max_ms"]), 2),
                    }
                )
            route_stats.sort(key=lambda item: item["requests"], reverse=True)
            return {
                "requests_total": int(self._requests_total),
                "errors_total": int(self._errors_total),
                "by_route": route_stats[:40],
                "quotation_send": dict(sorted(self._quotation_send_total.items())),
                "reconciliation": {
                    "passes": dict(sorted(self._reconciliation_passes_total.items())),
                    "updates_total": int(self._reconciliation_updates_total),
                    "duplicates_removed_total": int(self._duplicates_removed_total),
                },
                "notifications": dict(sorted(self._notifications_total.items())),
                "domain_events": {
                    "emitted_total": int(sum(self._domain_event_emitted_total.values())),
                    "by_type": dict(sorted(self._domain_event_emitted_total.items())),
                },
                "remote_calls": {
                    target: {
                        "count": int(state["count"]),
                        "avg_ms": round(float(state["sum"]) / state["count"], 2) if state["count"] else 0.0,
                        "failed": int(self._remote_call_failed_total.get(target, 0)),
                    }
                    for target, state in sorted(self._remote_call_duration_ms.items())
                },
            }

    def prometheus_snapshot(self) -> dict:
        with self._lock:
            return {
                "http_request_total": [
                    {"method": method, "route": route, "status": status, "value": value}
                    for (method, route, status), value in sorted(self._http_request_total.items())
                ],
                "quotation_send_total": dict(self._quotation_send_total),
                "reconciliation_passes_total": dict(self._reconciliation_passes_total),
                "reconciliation_updates_total": int(self._reconciliation_updates_total),
                "duplicates_removed_total": int(self._duplicates_removed_total),
                "notifications_total": dict(self._notifications_total),
                "remote_call_failed_total": dict(self._remote_call_failed_total),
            }

    def reset(self) -> None:
        with self._lock:
            self._requests_total = 0
            self._errors_total = 0
            self._by_route.clear()
            self._http_request_total.clear()
            self._quotation_send_total.clear()
            self._reconciliation_passes_total.clear()
            self._reconciliation_updates_total = 0
            self._duplicates_removed_total = 0
            self._notifications_total.clear()
            self._domain_event_emitted_total.clear()
            self._remote_call_duration_ms.clear()
            self._remote_call_failed_total.clear()


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_quotation_send(result: str) -> None:
    _METRICS.observe_quotation_send(result)


def observe_reconciliation_pass(source: str, updated: int) -> None:
    _METRICS.observe_reconciliation_pass(source, updated)


def observe_duplicates_removed(count: int) -> None:
    _METRICS.observe_duplicates_removed(count)


def observe_notification(kind: str) -> None:
    _METRICS.observe_notification(kind)


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_domain_event_emitted(event_type)


def observe_remote_call(target: str, duration_ms: float, failed: bool = False) -> None:
    _METRICS.observe_remote_call(target, duration_ms, failed=failed)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def prometheus_metrics_text() -> str:
    snapshot = _METRICS.prometheus_snapshot()
    lines: list[str] = []

    lines.append("# HELP http_request_total Total HTTP requests by method, route and status.")
    lines.append("# TYPE http_request_total counter")
    for sample in snapshot["http_request_total"]:
        lines.append(
            _prom_line(
                "http_request_total",
                int(sample["value"]),
                labels={"method": sample["method"], "route": sample["route"], "status": sample["status"]},
            )
        )

    lines.append("# HELP quotation_send_total Quotation send attempts by result.")
    lines.append("# TYPE quotation_send_total counter")
    for result, value in sorted(snapshot["quotation_send_total"].items()):
        lines.append(_prom_line("quotation_send_total", int(value), labels={"result": result}))

    lines.append("# HELP reconciliation_passes_total Reconciliation passes by snapshot source.")
    lines.append("# TYPE reconciliation_passes_total counter")
    for source, value in sorted(snapshot["reconciliation_passes_total"].items()):
        lines.append(_prom_line("reconciliation_passes_total", int(value), labels={"source": source}))

    lines.append("# TYPE reconciliation_updates_total counter")
    lines.append(_prom_line("reconciliation_updates_total", int(snapshot["reconciliation_updates_total"])))
    lines.append("# TYPE quotation_duplicates_removed_total counter")
    lines.append(_prom_line("quotation_duplicates_removed_total", int(snapshot["duplicates_removed_total"])))

    lines.append("# TYPE notifications_total counter")
    for kind, value in sorted(snapshot["notifications_total"].items()):
        lines.append(_prom_line("notifications_total", int(value), labels={"kind": kind}))

    lines.append("# TYPE remote_call_failed_total counter")
    for target, value in sorted(snapshot["remote_call_failed_total"].items()):
        lines.append(_prom_line("remote_call_failed_total", int(value), labels={"target": target}))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
