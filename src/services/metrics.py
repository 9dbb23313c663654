# -*- coding: utf-8 -*-
"""
Service for managing Prometheus metrics.

Provides a centralized service for creating, registering, and collecting metrics.
Also includes middleware for automatically recording HTTP request metrics and
counters for the trust engine (ingestion outcomes, level transitions,
integrity holds and eligibility checks).
"""

import os
import time
import uuid
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest


def init_metrics(app: Flask, registry: Optional[CollectorRegistry] = None) -> None:
    """Initialize metrics service and endpoints."""
    service = MetricsService(registry=registry)
    app.extensions['metrics'] = service

    if service.enabled:
        @app.before_request
        def before_request():
            g.start_time = time.time()

        @app.after_request
        def after_request(response):
            duration = time.time() - getattr(g, 'start_time', time.time())
            service.record_http_request(
                route=request.path,
                method=request.method,
                status_code=response.status_code,
                duration_seconds=duration
            )
            return response

        @app.route("/metrics")
        def metrics():
            return generate_latest(service.registry), 200, {
                'Content-Type': 'text/plain; version=0.0.4; charset=utf-8'}


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize the metrics service."""
        self.enabled = os.environ.get(
            "TRUST_METRICS_ENABLED",
            "true").lower() == "true"
        self.registry = registry if registry is not None else REGISTRY

        if self.enabled:
            self.http_requests_total = Counter(
                "trust_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "trust_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.events_ingested_total = Counter(
                "trust_events_ingested_total",
                "Lifecycle notifications processed, by outcome.",
                ["role", "kind", "outcome"],
                registry=self.registry
            )
            self.level_transitions_total = Counter(
                "trust_level_transitions_total",
                "Trust level changes.",
                ["role", "direction"],
                registry=self.registry
            )
            self.integrity_errors_total = Counter(
                "trust_integrity_errors_total",
                "Impossible counter states detected.",
                ["role"],
                registry=self.registry
            )
            self.eligibility_checks_total = Counter(
                "trust_eligibility_checks_total",
                "Eligibility gate decisions.",
                ["role", "eligible"],
                registry=self.registry
            )
            self.recalculation_duration_seconds = Histogram(
                "trust_recalculation_duration_seconds",
                "Duration of one ledger write plus recalculation unit.",
                ["role"],
                registry=self.registry
            )

    def record_http_request(
            self,
            route: str,
            method: str,
            status_code: int,
            duration_seconds: float):
        """Record an HTTP request."""
        if self.enabled:
            normalized_route = self._normalize_route(route)
            self.http_requests_total.labels(
                route=normalized_route,
                method=method,
                status=status_code).inc()
            self.http_request_duration_seconds.labels(
                route=normalized_route, method=method).observe(duration_seconds)

    def record_ingestion(self, role: str, kind: str, outcome: str):
        """Record an ingestion outcome (inserted, duplicate, rejected, failed)."""
        if self.enabled:
            self.events_ingested_total.labels(role=role, kind=kind, outcome=outcome).inc()

    def record_level_transition(self, role: str, from_level: int, to_level: int):
        """Record a promotion or demotion."""
        if self.enabled and from_level != to_level:
            direction = 'promotion' if to_level > from_level else 'demotion'
            self.level_transitions_total.labels(role=role, direction=direction).inc()

    def record_integrity_error(self, role: str):
        if self.enabled:
            self.integrity_errors_total.labels(role=role).inc()

    def record_eligibility_check(self, role: str, eligible: bool):
        if self.enabled:
            self.eligibility_checks_total.labels(
                role=role, eligible=str(bool(eligible)).lower()).inc()

    def record_recalculation(self, role: str, duration_seconds: float):
        if self.enabled:
            self.recalculation_duration_seconds.labels(role=role).observe(duration_seconds)

    def get_metrics(self) -> str:
        """Get metrics data as text."""
        if self.enabled:
            return generate_latest(self.registry).decode('utf-8')
        return ""

    def _normalize_route(self, route: str) -> str:
        parts = route.split('/')
        for i, part in enumerate(parts):
            if part.isdigit():
                parts[i] = '{id}'
            try:
                uuid.UUID(part)
                parts[i] = '{uuid}'
            except (ValueError, AttributeError):
                pass
        return '/'.join(parts)
