"""
Prometheus metrics for the dual-response server.
All collectors live on a private registry so tests and multiple app instances never collide
with the default process registry.
"""
from __future__ import annotations

import os
from typing import Optional

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

# Single registry for the process
_REGISTRY: Optional[CollectorRegistry] = None

# Metrics objects
RESOURCES_CREATED = None
RESOURCES_REMOVED = None
RESOURCES_ACTIVE = None
PAGE_REQUESTS = None
ROWS_RETURNED = None
QUERY_LATENCY = None


def _get_registry() -> CollectorRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = CollectorRegistry()
    return _REGISTRY


def init_metrics():
    global RESOURCES_CREATED, RESOURCES_REMOVED, RESOURCES_ACTIVE, PAGE_REQUESTS, ROWS_RETURNED, QUERY_LATENCY
    if RESOURCES_CREATED is not None:
        return
    reg = _get_registry()
    RESOURCES_CREATED = Counter("dual_resources_created_total", "Resources registered by the query tool", registry=reg)
    RESOURCES_REMOVED = Counter("dual_resources_removed_total", "Resources removed by reason", ["reason"], registry=reg)
    RESOURCES_ACTIVE = Gauge("dual_resources_active", "Resources currently held in the registry", registry=reg)
    PAGE_REQUESTS = Counter("dual_page_requests_total", "Gateway requests by method and outcome", ["method", "outcome"], registry=reg)
    ROWS_RETURNED = Counter("dual_rows_returned_total", "Rows served by the gateway", ["method"], registry=reg)
    QUERY_LATENCY = Histogram("dual_query_latency_seconds", "Query execution latency by outcome", ["outcome"], registry=reg)


# Initialize eagerly if enabled
if os.getenv("METRICS_ENABLED", "1").lower() in {"1", "true", "yes", "on"}:
    init_metrics()


def record_resource_created(active: int):
    if RESOURCES_CREATED is None:
        return
    RESOURCES_CREATED.inc()
    RESOURCES_ACTIVE.set(active)


def record_resource_removed(reason: str, active: int):
    if RESOURCES_REMOVED is None:
        return
    RESOURCES_REMOVED.labels(reason=reason).inc()
    RESOURCES_ACTIVE.set(active)


def record_page_request(method: str, outcome: str, rows: int = 0):
    if PAGE_REQUESTS is None:
        return
    PAGE_REQUESTS.labels(method=method, outcome=outcome).inc()
    if rows:
        ROWS_RETURNED.labels(method=method).inc(rows)


def record_query(success: bool, latency_s: float):
    if QUERY_LATENCY is None:
        return
    outcome = "success" if success else "failure"
    QUERY_LATENCY.labels(outcome=outcome).observe(max(0.0, latency_s))


def metrics_payload_bytes() -> bytes:
    if _REGISTRY is None:
        return b""
    return generate_latest(_REGISTRY)


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
