"""
Webhook, health and metrics HTTP server.

Exposes:
- POST /webhook — signed GitHub webhook deliveries
- GET /health — JSON health status
- GET /metrics — Prometheus-compatible metrics
"""

from __future__ import annotations

from typing import Any

import structlog
from aiohttp import web

from .events import EventParseError, parse_event
from .metrics import MetricsCollector
from .router import EventRouter
from .signature import SignatureError, verify_signature

log = structlog.get_logger()

SIGNATURE_HEADER = "X-Hub-Signature"
EVENT_HEADER = "X-GitHub-Event"


class WebhookServer:
    """aiohttp server in front of the event router."""

    def __init__(
        self,
        router: EventRouter,
        webhook_secret: str,
        host: str = "0.0.0.0",
        port: int = 9000,
        metrics: MetricsCollector | None = None,
        metrics_enabled: bool = True,
    ):
        self._router = router
        self._secret = webhook_secret.encode()
        self._host = host
        self._port = port
        self._metrics = metrics or MetricsCollector()
        self._metrics_enabled = metrics_enabled
        self._status: dict[str, Any] = {}
        self._runner: web.AppRunner | None = None

    def update_status(self, **status: Any) -> None:
        self._status = status

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/webhook", self._webhook_handler)
        app.router.add_get("/health", self._health_handler)
        if self._metrics_enabled:
            app.router.add_get("/metrics", self._metrics_handler)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _webhook_handler(self, request: web.Request) -> web.Response:
        body = await request.read()
        self._metrics.inc("webhooks_received_total")

        try:
            valid = verify_signature(self._secret, request.headers.get(SIGNATURE_HEADER), body)
        except SignatureError as exc:
            log.warning("server.signature_error", error=str(exc))
            self._metrics.inc("webhooks_rejected_total", reason="signature_error")
            return web.Response(status=500)

        if not valid:
            self._metrics.inc("webhooks_rejected_total", reason="unauthorized")
            return web.Response(status=401, text="Not authorized")

        kind = request.headers.get(EVENT_HEADER, "")
        try:
            event = parse_event(kind, body)
        except EventParseError as exc:
            log.debug("server.bad_payload", kind=kind, error=str(exc))
            self._metrics.inc("webhooks_rejected_total", reason="bad_request")
            return web.Response(status=400, text="Bad request body")

        if event is None:
            log.debug("server.unhandled_event_kind", kind=kind)
            return web.json_response({"status": "ignored", "event": kind})

        await self._router.handle_event(event)
        return web.json_response({"status": "processed", "event": kind})

    async def _health_handler(self, request: web.Request) -> web.Response:
        store_ok = self._status.get("store_reachable", True)
        body = {
            "status": "healthy" if store_ok else "degraded",
            **self._status,
            "webhooks_received": self._metrics.get("webhooks_received_total"),
        }
        return web.json_response(body)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            text=self._metrics.to_prometheus(),
            content_type="text/plain",
        )
