"""HTTP endpoints for the relay.

Provides the world-snapshot ingestion endpoint used by the Minecraft add-on,
plus health, state inspection, metrics and gamertag lookup endpoints for the
web client and monitoring.
"""

import logging
import resource
import sys
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from json import JSONDecodeError
from typing import Any

import aiohttp
from aiohttp import web

from envirovoice.config import HttpConfig
from envirovoice.errors import SnapshotProcessingError
from envirovoice.hub import RelayHub
from envirovoice.lookup import GamertagLookup

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _rss_megabytes() -> int:
    """Peak resident set size of this process in MB."""
    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS reports bytes
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(max_rss / divisor)


class RelayHttpHandler:
    """HTTP handlers backed by a relay hub."""

    def __init__(self, hub: RelayHub, lookup: GamertagLookup | None = None) -> None:
        """Initialize handler.

        Args:
            hub: Relay hub
            lookup: Gamertag lookup client (endpoint disabled if None)
        """
        self.hub = hub
        self.lookup = lookup

    async def minecraft_data(self, request: web.Request) -> web.Response:
        """Ingest a world snapshot and fan it out to every client.

        Returns:
            200 OK: {"success": true, "processed", "broadcasted", "duration"}
            400 Bad Request: Body is not valid JSON
            500 Internal Server Error: Snapshot could not be processed
        """
        try:
            payload = await request.json()
        except (JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Rejected snapshot with invalid JSON", extra={"error": str(e)})
            return web.json_response({"success": False, "error": "Invalid JSON"}, status=400)

        try:
            summary = await self.hub.ingest_snapshot(payload)
        except SnapshotProcessingError as e:
            logger.error("Minecraft data processing error", extra={"error": str(e)})
            return web.json_response({"success": False, "error": str(e)}, status=500)
        except Exception as e:
            logger.error(
                "Unexpected snapshot failure",
                extra={"error": str(e)},
                exc_info=True,
            )
            return web.json_response({"success": False, "error": str(e)}, status=500)

        return web.json_response(summary.to_response())

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Response format:
        {
            "status": "ok",
            "timestamp": str,
            "connections": {"total": int, "max": int, "usage": "N%"},
            "memory": {"rss": "NMB"},
            "uptime": int,
            "states": {"ptt": int, "voice": int}
        }
        """
        stats = self.hub.stats()
        total = stats["participants"]
        maximum = stats["max_participants"]

        response_data = {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "connections": {
                "total": total,
                "max": maximum,
                "usage": f"{round(total / maximum * 100)}%",
                "sockets": stats["connections"],
            },
            "memory": {"rss": f"{_rss_megabytes()}MB"},
            "uptime": round(stats["uptime_s"]),
            "states": {
                "ptt": stats["ptt_states"],
                "voice": stats["voice_states"],
            },
        }

        return web.json_response(response_data)

    async def ptt_states(self, request: web.Request) -> web.Response:
        states = [s.to_dict() for s in self.hub.presence.ptt_states()]
        return web.json_response({"pttStates": states})

    async def voice_states(self, request: web.Request) -> web.Response:
        states = [s.to_dict() for s in self.hub.presence.voice_states()]
        return web.json_response({"voiceStates": states})

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
        """
        metrics_text = self.hub.metrics.export_prometheus()
        return web.Response(text=metrics_text, content_type="text/plain", charset="utf-8")

    async def gamertag_lookup(self, request: web.Request) -> web.Response:
        """Report whether a gamertag has a public profile.

        Returns:
            200 OK: {"gamertag": str, "exists": bool}
            404 Not Found: Lookup disabled
            500 Internal Server Error: Upstream lookup failed
        """
        tag = request.match_info["tag"]
        if self.lookup is None:
            raise web.HTTPNotFound()

        try:
            exists = await self.lookup.exists(tag)
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error("Gamertag verification failed", extra={"gamertag": tag, "error": str(e)})
            return web.json_response(
                {"error": "Verification failed", "message": str(e) or type(e).__name__},
                status=500,
            )

        return web.json_response({"gamertag": tag, "exists": exists})


def make_cors_middleware(allow_origin: str) -> Any:
    """Build a middleware adding CORS headers and answering preflight requests."""
    headers = {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
    }

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            return web.Response(status=200, headers=headers)
        try:
            response = await handler(request)
        except web.HTTPException as e:
            e.headers.update(headers)
            raise
        response.headers.update(headers)
        return response

    return cors_middleware


def make_slow_request_middleware(threshold_ms: int) -> Any:
    """Build a middleware logging requests slower than `threshold_ms`."""

    @web.middleware
    async def slow_request_middleware(
        request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        start = time.perf_counter()
        try:
            return await handler(request)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if duration_ms > threshold_ms:
                logger.warning(
                    "Slow request",
                    extra={
                        "method": request.method,
                        "path": request.path,
                        "duration_ms": round(duration_ms),
                    },
                )

    return slow_request_middleware


def create_app(
    hub: RelayHub,
    config: HttpConfig,
    lookup: GamertagLookup | None = None,
) -> web.Application:
    """Create the relay HTTP application.

    Args:
        hub: Relay hub
        config: HTTP configuration
        lookup: Gamertag lookup client (optional)

    Returns:
        Configured aiohttp Application
    """
    app = web.Application(
        client_max_size=config.max_body_size,
        middlewares=[
            make_slow_request_middleware(config.slow_request_ms),
            make_cors_middleware(config.cors_allow_origin),
        ],
    )
    setup_routes(app, hub, lookup=lookup)

    # Static files go last so API routes win
    if config.static_dir is not None:
        if config.static_dir.is_dir():
            app.router.add_static("/", config.static_dir, show_index=False)
            logger.info("Serving static files", extra={"static_dir": str(config.static_dir)})
        else:
            logger.warning(
                "Static directory not found", extra={"static_dir": str(config.static_dir)}
            )

    return app


def setup_routes(
    app: web.Application,
    hub: RelayHub,
    lookup: GamertagLookup | None = None,
) -> None:
    """Set up relay routes on an application.

    Args:
        app: aiohttp Application instance
        hub: Relay hub
        lookup: Gamertag lookup client (optional)
    """
    handler = RelayHttpHandler(hub, lookup=lookup)

    app.router.add_post("/minecraft-data", handler.minecraft_data)
    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/ptt-states", handler.ptt_states)
    app.router.add_get("/voice-states", handler.voice_states)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/gamertag/{tag}", handler.gamertag_lookup)

    logger.info(
        "HTTP endpoints configured: "
        "/minecraft-data, /health, /ptt-states, /voice-states, /metrics, /gamertag/{tag}"
    )
