"""Prometheus instruments shared by the HTTP layer and the orchestrator."""

from __future__ import annotations

import os

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


METRICS_NAMESPACE = os.environ.get("METRICS_NAMESPACE", "jarvis")

REQUEST_COUNTER = Counter(
    "http_requests_total",
    "Total HTTP requests processed",
    ["method", "endpoint", "status"],
    namespace=METRICS_NAMESPACE,
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP requests resulting in errors",
    ["method", "endpoint", "status"],
    namespace=METRICS_NAMESPACE,
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    namespace=METRICS_NAMESPACE,
)
IN_FLIGHT_GAUGE = Gauge(
    "http_requests_in_flight",
    "Current number of in-flight HTTP requests",
    namespace=METRICS_NAMESPACE,
)
BACKEND_ATTEMPTS = Counter(
    "backend_attempts_total",
    "Chat attempts made against each AI backend",
    ["backend", "outcome"],
    namespace=METRICS_NAMESPACE,
)
BACKEND_LATENCY = Histogram(
    "backend_attempt_duration_seconds",
    "Latency of individual AI backend chat attempts",
    ["backend"],
    namespace=METRICS_NAMESPACE,
)


__all__ = [
    "BACKEND_ATTEMPTS",
    "BACKEND_LATENCY",
    "CONTENT_TYPE_LATEST",
    "IN_FLIGHT_GAUGE",
    "REQUEST_COUNTER",
    "REQUEST_ERRORS",
    "REQUEST_LATENCY",
    "generate_latest",
]
