"""HTTP scrape endpoint.

Serves the current gauge values at ``/metrics`` and the refresh status at
``/health``. Refresh errors never reach a scrape request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from aiohttp import web

from marzban_exporter.metrics.registry import CONTENT_TYPE

if TYPE_CHECKING:
    from marzban_exporter.metrics.exporter import MarzbanMetrics
    from marzban_exporter.scheduler import RefreshScheduler

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8050

METRICS_KEY = web.AppKey("metrics", object)
SCHEDULER_KEY = web.AppKey("scheduler", object)


async def handle_metrics(request: web.Request) -> web.Response:
    """Render the metrics registry."""
    metrics: MarzbanMetrics = request.app[METRICS_KEY]
    body = metrics.render()
    # CONTENT_TYPE carries the charset, so set the header directly
    return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE})


async def handle_health(request: web.Request) -> web.Response:
    """Report whether recent refresh cycles succeeded."""
    scheduler: RefreshScheduler | None = request.app.get(SCHEDULER_KEY)
    if scheduler is None:
        return web.json_response({"status": "ok"})

    healthy = scheduler.healthy
    return web.json_response(
        {
            "status": "ok" if healthy else "unhealthy",
            "last_success": scheduler.last_success,
            "last_error": scheduler.last_error,
            "cycles": scheduler.cycles,
            "failures": scheduler.failures,
        },
        status=200 if healthy else 503,
    )


def create_app(
    metrics: MarzbanMetrics,
    scheduler: RefreshScheduler | None = None,
) -> web.Application:
    """Build the scrape application.

    Args:
        metrics: Gauges rendered on /metrics.
        scheduler: Optional scheduler reported on /health.
    """
    app = web.Application()
    app[METRICS_KEY] = metrics
    if scheduler is not None:
        app[SCHEDULER_KEY] = scheduler

    app.router.add_get("/metrics", handle_metrics)
    app.router.add_get("/health", handle_health)
    return app


async def serve(
    app: web.Application,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve the application until the calling task is cancelled."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Serving metrics on http://{host}:{port}/metrics")

    try:
        # Keep running
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
