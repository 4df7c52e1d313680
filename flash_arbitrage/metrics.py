"""
Prometheus metrics for the flash arbitrage engine

Exposes poll, detection, execution and P&L metrics for monitoring and alerting.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class EngineMetrics:
    """
    Engine metrics collection and exposure

    Provides Prometheus-compatible metrics for:
    - Price polls and per-venue read errors
    - Deltas, opportunities and rejections
    - Execution outcomes and submission latency
    - Circuit breaker state and net P&L
    """

    def __init__(self, engine_name: str = "flash-arb", registry: Optional[CollectorRegistry] = None):
        """Initialize metrics with custom registry or default"""
        self.engine_name = engine_name
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

        self._lock = threading.RLock()

    def _initialize_metrics(self):
        """Initialize all Prometheus metrics"""

        # === POLL METRICS ===
        self.polls_total = Counter(
            "flash_arb_polls_total",
            "Total number of completed price polls",
            ["engine"],
            registry=self.registry,
        )

        self.poll_errors_total = Counter(
            "flash_arb_poll_errors_total",
            "Per-pool read or decode failures",
            ["engine", "venue"],
            registry=self.registry,
        )

        self.liveness_alarms_total = Counter(
            "flash_arb_liveness_alarms_total",
            "Polls abandoned after exhausting batch retries",
            ["engine"],
            registry=self.registry,
        )

        self.poll_duration_seconds = Histogram(
            "flash_arb_poll_duration_seconds",
            "Wall time of one batched poll",
            ["engine"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
            registry=self.registry,
        )

        self.fresh_pools = Gauge(
            "flash_arb_fresh_pools",
            "Pools with a fresh snapshot after the last poll",
            ["engine"],
            registry=self.registry,
        )

        # === DETECTION METRICS ===
        self.deltas_total = Counter(
            "flash_arb_deltas_total",
            "Price deltas above threshold",
            ["engine", "pair"],
            registry=self.registry,
        )

        self.opportunities_total = Counter(
            "flash_arb_opportunities_total",
            "Deltas that cleared the profit floor",
            ["engine", "pair"],
            registry=self.registry,
        )

        self.rejections_total = Counter(
            "flash_arb_rejections_total",
            "Deltas rejected by the evaluator",
            ["engine", "reason"],
            registry=self.registry,
        )

        self.expected_net_profit = Histogram(
            "flash_arb_expected_net_profit",
            "Expected net profit per opportunity (quote units)",
            ["engine"],
            buckets=[0, 0.1, 0.5, 1, 5, 10, 50, 100],
            registry=self.registry,
        )

        # === EXECUTION METRICS ===
        self.outcomes_total = Counter(
            "flash_arb_outcomes_total",
            "Execution outcomes by status and reason",
            ["engine", "status", "reason"],
            registry=self.registry,
        )

        self.submission_latency_seconds = Histogram(
            "flash_arb_submission_latency_seconds",
            "Time from broadcast to receipt",
            ["engine"],
            buckets=[0.5, 1, 2, 5, 10, 30, 60, 120, 300],
            registry=self.registry,
        )

        # === RISK / P&L METRICS ===
        self.circuit_paused = Gauge(
            "flash_arb_circuit_paused",
            "1 while the circuit breaker is paused",
            ["engine"],
            registry=self.registry,
        )

        self.consecutive_failures = Gauge(
            "flash_arb_consecutive_failures",
            "Consecutive counted failures",
            ["engine"],
            registry=self.registry,
        )

        self.circuit_trips_total = Counter(
            "flash_arb_circuit_trips_total",
            "Circuit breaker trips",
            ["engine"],
            registry=self.registry,
        )

        self.net_pnl = Gauge(
            "flash_arb_net_pnl",
            "Cumulative net P&L from the ledger (quote units)",
            ["engine"],
            registry=self.registry,
        )

        self.last_activity_timestamp = Gauge(
            "flash_arb_last_activity_timestamp",
            "Unix timestamp of the last completed cycle",
            ["engine"],
            registry=self.registry,
        )

    # === RECORDING ===

    def record_poll(self, duration: float, fresh: int, failed: int):
        with self._lock:
            self.polls_total.labels(engine=self.engine_name).inc()
            self.poll_duration_seconds.labels(engine=self.engine_name).observe(duration)
            self.fresh_pools.labels(engine=self.engine_name).set(fresh)

    def record_poll_error(self, venue: str):
        with self._lock:
            self.poll_errors_total.labels(engine=self.engine_name, venue=venue).inc()

    def record_liveness_alarm(self):
        with self._lock:
            self.liveness_alarms_total.labels(engine=self.engine_name).inc()

    def record_delta(self, pair: str):
        with self._lock:
            self.deltas_total.labels(engine=self.engine_name, pair=pair).inc()

    def record_opportunity(self, pair: str, net_profit: float):
        with self._lock:
            self.opportunities_total.labels(engine=self.engine_name, pair=pair).inc()
            self.expected_net_profit.labels(engine=self.engine_name).observe(net_profit)

    def record_rejection(self, reason: str):
        """Record an evaluator rejection; only the reason code before ':' is a label"""
        with self._lock:
            self.rejections_total.labels(
                engine=self.engine_name, reason=reason.split(":")[0]
            ).inc()

    def record_outcome(self, status: str, reason: Optional[str] = None):
        # simulation_revert:InsufficientProfit keeps the error name; cardinality is bounded
        with self._lock:
            self.outcomes_total.labels(
                engine=self.engine_name, status=status, reason=reason or ""
            ).inc()

    def observe_submission_latency(self, seconds: float):
        with self._lock:
            self.submission_latency_seconds.labels(engine=self.engine_name).observe(seconds)

    def set_circuit_state(self, paused: bool, consecutive_failures: int):
        with self._lock:
            self.circuit_paused.labels(engine=self.engine_name).set(1 if paused else 0)
            self.consecutive_failures.labels(engine=self.engine_name).set(consecutive_failures)

    def record_circuit_trip(self):
        with self._lock:
            self.circuit_trips_total.labels(engine=self.engine_name).inc()
            self.circuit_paused.labels(engine=self.engine_name).set(1)

    def set_net_pnl(self, value: float):
        with self._lock:
            self.net_pnl.labels(engine=self.engine_name).set(value)

    def update_last_activity(self):
        with self._lock:
            self.last_activity_timestamp.labels(engine=self.engine_name).set(time.time())

    # === SERVER MANAGEMENT ===

    async def start_server(self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"):
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        try:
            if self._site:
                await self._site.stop()
            if self._runner:
                await self._runner.cleanup()
            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")

    async def _metrics_handler(self, request):
        """Handle metrics endpoint requests"""
        try:
            metrics_output = generate_latest(self.registry)
            # aiohttp rejects a charset inside content_type
            content_type = CONTENT_TYPE_LATEST.split(";")[0]
            return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)
        except Exception as e:
            logger.error(f"Error generating metrics: {e}")
            return web.Response(text="Error generating metrics", status=500)

    async def _health_handler(self, request):
        """Handle health check endpoint"""
        return web.json_response({"status": "healthy", "service": self.engine_name})

    def get_metrics_summary(self) -> Dict[str, Any]:
        return {
            "engine": self.engine_name,
            "registry_collectors": len(list(self.registry._collector_to_names.keys())),
            "timestamp": time.time(),
        }
