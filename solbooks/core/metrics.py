"""
Prometheus Metrics Export for the ledger core

Exports refresh health so partial coverage is visible without surfacing
errors to callers:
- Refresh count and duration
- Wallets processed / failed per refresh
- Candidate and canonical record counts
- Price fallbacks
- Signature cache size and evictions
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)


class LedgerMetrics:
    """
    Prometheus metrics exporter for the ledger core.

    Each instance owns its own CollectorRegistry so several ledgers (or test
    cases) can coexist in one process.
    """

    def __init__(self, port: int = 8082, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics exporter.

        Args:
            port: Port to expose metrics on
            registry: Registry to register into (a private one by default)
        """
        self.port = port
        self.registry = registry if registry is not None else CollectorRegistry()
        self.metrics_started = False

        self.refreshes = Counter(
            'solbooks_refreshes_total',
            'Refresh runs by outcome',
            ['outcome'],
            registry=self.registry,
        )

        self.refresh_duration = Histogram(
            'solbooks_refresh_duration_seconds',
            'Time taken by a refresh run',
            buckets=[1, 5, 15, 30, 60, 120, 300, 600],
            registry=self.registry,
        )

        self.wallets = Counter(
            'solbooks_wallets_total',
            'Wallets handled by the address queue by outcome',
            ['outcome'],
            registry=self.registry,
        )

        self.candidates = Counter(
            'solbooks_candidates_total',
            'Candidate records emitted by fetchers',
            ['source'],
            registry=self.registry,
        )

        self.records_total = Gauge(
            'solbooks_records',
            'Canonical records after the last refresh',
            registry=self.registry,
        )

        self.price_fallbacks = Counter(
            'solbooks_price_fallbacks_total',
            'Price refreshes that fell back to static rates',
            registry=self.registry,
        )

        self.signature_cache_size = Gauge(
            'solbooks_signature_cache_size',
            'Tracked signatures',
            registry=self.registry,
        )

        self.signature_cache_evictions = Gauge(
            'solbooks_signature_cache_evictions',
            'Signatures evicted since start',
            registry=self.registry,
        )

    def start_server(self):
        """Start Prometheus metrics HTTP server."""
        if self.metrics_started:
            return

        try:
            start_http_server(self.port, registry=self.registry)
            self.metrics_started = True
            logger.info(f"Prometheus metrics server started on port {self.port}")
        except OSError as e:
            logger.warning(f"Failed to start Prometheus metrics server: {e}")

    def record_refresh(self, outcome: str, duration_seconds: Optional[float] = None):
        self.refreshes.labels(outcome=outcome).inc()
        if duration_seconds is not None:
            self.refresh_duration.observe(duration_seconds)

    def record_wallet(self, outcome: str, count: int = 1):
        self.wallets.labels(outcome=outcome).inc(count)

    def record_candidates(self, source: str, count: int):
        if count:
            self.candidates.labels(source=source).inc(count)

    def record_price_fallback(self):
        self.price_fallbacks.inc()

    def update_records(self, count: int):
        self.records_total.set(count)

    def update_signature_cache(self, size: int, evictions: int):
        self.signature_cache_size.set(size)
        self.signature_cache_evictions.set(evictions)
