"""
Prometheus Metrics for the pool guardian

Exposes detection, compensation and risk decision metrics over an aiohttp
/metrics endpoint.
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
    generate_latest,
)

from .constants import METRICS_CONSTANTS
from .fixed_point import from_base_units

logger = logging.getLogger(__name__)

PREFIX = METRICS_CONSTANTS["METRIC_PREFIX"]


class GuardianMetrics:
    """
    Guardian metrics collection and exposure

    Provides Prometheus-compatible metrics for:
    - Sandwich detections and compensation payouts
    - Risk policy decisions and executor failures
    - Pool imbalance, volatility and cooldown state
    """

    def __init__(
        self, registry: Optional[CollectorRegistry] = None, token_decimals: int = 18
    ):
        self.registry = registry or REGISTRY
        self.token_decimals = token_decimals
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None
        self._started_at = time.time()

        self._lock = threading.RLock()

    def _initialize_metrics(self):
        # === DETECTION / COMPENSATION ===
        self.sandwiches_detected_total = Counter(
            f"{PREFIX}_sandwiches_detected_total",
            "Total sandwich attacks detected",
            ["pool_id"],
            registry=self.registry,
        )

        self.compensations_paid_total = Counter(
            f"{PREFIX}_compensations_paid_total",
            "Total compensation payouts confirmed by the executor",
            ["pool_id"],
            registry=self.registry,
        )

        self.compensation_amount_total = Counter(
            f"{PREFIX}_compensation_amount_total",
            "Total compensation paid, in tokens",
            ["pool_id"],
            registry=self.registry,
        )

        # === DECISIONS ===
        self.decisions_total = Counter(
            f"{PREFIX}_decisions_total",
            "Risk policy decisions by action",
            ["action"],
            registry=self.registry,
        )

        self.execution_failures_total = Counter(
            f"{PREFIX}_execution_failures_total",
            "Executor failures by action",
            ["action"],
            registry=self.registry,
        )

        # === STATE ===
        self.treasury_balance = Gauge(
            f"{PREFIX}_treasury_balance",
            "Insurance treasury balance, in tokens",
            registry=self.registry,
        )

        self.imbalance_ratio = Gauge(
            f"{PREFIX}_imbalance_ratio",
            "Fraction of pool value held in token A",
            ["pool_id"],
            registry=self.registry,
        )

        self.volatility = Gauge(
            f"{PREFIX}_volatility",
            "Rolling pool price volatility (sigma / mean)",
            ["pool_id"],
            registry=self.registry,
        )

        self.cooldown_remaining_seconds = Gauge(
            f"{PREFIX}_cooldown_remaining_seconds",
            "Seconds left in the protective withdraw cooldown",
            ["pool_id"],
            registry=self.registry,
        )

    def record_sandwich(self, pool_id: str):
        with self._lock:
            self.sandwiches_detected_total.labels(pool_id=pool_id).inc()

    def record_compensation(self, pool_id: str, amount: int):
        """Record a confirmed payout. amount is in base units."""
        with self._lock:
            self.compensations_paid_total.labels(pool_id=pool_id).inc()
            if amount > 0:
                self.compensation_amount_total.labels(pool_id=pool_id).inc(
                    float(from_base_units(amount, self.token_decimals))
                )

    def record_decision(self, action: str):
        with self._lock:
            self.decisions_total.labels(action=action).inc()

    def record_execution_failure(self, action: str):
        with self._lock:
            self.execution_failures_total.labels(action=action).inc()

    def update_treasury(self, balance: int):
        with self._lock:
            self.treasury_balance.set(
                float(from_base_units(balance, self.token_decimals))
            )

    def update_risk_state(
        self,
        pool_id: str,
        imbalance_ratio: float,
        volatility: float,
        cooldown_remaining: float,
    ):
        with self._lock:
            self.imbalance_ratio.labels(pool_id=pool_id).set(imbalance_ratio)
            self.volatility.labels(pool_id=pool_id).set(volatility)
            self.cooldown_remaining_seconds.labels(pool_id=pool_id).set(
                cooldown_remaining
            )

    async def start_server(
        self,
        port: int = METRICS_CONSTANTS["DEFAULT_PORT"],
        host: str = "0.0.0.0",
        path: str = METRICS_CONSTANTS["DEFAULT_PATH"],
    ) -> bool:
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        metrics_output = generate_latest(self.registry)
        # aiohttp rejects a charset inside content_type
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(
            text=metrics_output.decode("utf-8"), content_type=content_type
        )

    async def _health_handler(self, request):
        return web.json_response(
            {
                "status": "healthy",
                "service": "pool_guardian_metrics",
                "uptime_seconds": round(time.time() - self._started_at, 1),
            }
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Current counter values, for the CLI and status output"""
        with self._lock:
            return {
                "sandwiches_detected": _sum_samples(self.sandwiches_detected_total),
                "compensations_paid": _sum_samples(self.compensations_paid_total),
                "compensation_amount": _sum_samples(self.compensation_amount_total),
                "decisions": _sum_samples(self.decisions_total),
                "execution_failures": _sum_samples(self.execution_failures_total),
            }


def _sum_samples(metric) -> float:
    total = 0.0
    for family in metric.collect():
        for sample in family.samples:
            if sample.name.endswith("_total"):
                total += sample.value
    return total
