"""Health, status and metrics endpoints for the coordinator.

Provides HTTP endpoints for load balancers, monitoring systems and
orchestration tools (Docker healthcheck, Kubernetes liveness checks, Prometheus).
Every handler is read-only: it never mutates queue or pair state.
"""

import logging
import time

from aiohttp import web

from paircall.coordinator.metrics import MetricsCollector
from paircall.coordinator.service import MatchmakingService

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """HTTP handlers backed by a ``MatchmakingService``.

    Endpoints:
    - /health: liveness plus occupancy counters
    - /status: full occupancy snapshot
    - /liveness: process is up
    - /metrics: Prometheus exposition
    - /metrics/summary: JSON metrics digest
    """

    def __init__(
        self, service: MatchmakingService, metrics_collector: MetricsCollector | None = None
    ) -> None:
        """Initialize health check handler.

        Args:
            service: Coordinator service to report on
            metrics_collector: Collector to export (defaults to the service's)
        """
        self.service = service
        self.metrics_collector = metrics_collector or service.metrics
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Response format:
        {"status": "ok", "users": int, "waiting": int, "active": int}
        """
        snapshot = self.service.status()
        return web.json_response(
            {
                "status": "ok",
                "users": snapshot.online_count,
                "waiting": snapshot.queue_length,
                "active": snapshot.active_pairs,
            }
        )

    async def status(self, request: web.Request) -> web.Response:
        """Occupancy snapshot endpoint.

        Response format:
        {
            "online_count": int,
            "queue_length": int,
            "active_pairs": int,
            "oldest_wait_s": float | null,
            "uptime_s": float
        }
        """
        snapshot = self.service.status()
        logger.debug("Status requested", extra=snapshot.to_dict())
        return web.json_response(snapshot.to_dict())

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint; OK whenever the event loop is responsive."""
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            }
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint (text format 0.0.4)."""
        try:
            metrics_text = self.metrics_collector.export_prometheus()
            return web.Response(
                text=metrics_text,
                content_type="text/plain",
                charset="utf-8",
                headers={"X-Prometheus-Format": "0.0.4"},
            )
        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary endpoint."""
        try:
            return web.json_response(
                {
                    "status": "ok",
                    "uptime_seconds": time.time() - self.start_time,
                    "metrics": self.metrics_collector.get_summary(),
                }
            )
        except Exception as e:
            logger.error("Failed to generate metrics summary", extra={"error": str(e)}, exc_info=True)
            return web.json_response({"status": "error", "error": str(e)}, status=500)


def setup_health_routes(
    app: web.Application,
    service: MatchmakingService,
    metrics_collector: MetricsCollector | None = None,
) -> HealthCheckHandler:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        service: Coordinator service to report on
        metrics_collector: Optional collector override

    Returns:
        The handler bound to the routes
    """
    handler = HealthCheckHandler(service, metrics_collector)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/status", handler.status)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info("Health endpoints configured: /health, /status, /liveness, /metrics, /metrics/summary")
    return handler
