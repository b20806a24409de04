"""Prometheus metrics server for hitball.

Serves ``/metrics`` in the Prometheus text format and ``/health`` as JSON
from an aiohttp web application running inside the bot's event loop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from . import __version__

if TYPE_CHECKING:
    from .main import HitballApp


class MetricsServer:
    """Hitball-specific Prometheus metrics endpoint."""

    def __init__(
        self,
        app: HitballApp,
        host: str = "0.0.0.0",
        port: int = 28290,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._logger = logger or logging.getLogger("hitball.metrics")
        self._runner: web.AppRunner | None = None

    @property
    def port(self) -> int:
        return self._port

    def build_app(self) -> web.Application:
        web_app = web.Application()
        web_app.router.add_get("/metrics", self._handle_metrics)
        web_app.router.add_get("/health", self._handle_health)
        return web_app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        self._logger.info("Metrics listening on %s:%d (/metrics, /health)", self._host, self._port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ══════════════════════════════════════════════════════════
    #  Handlers
    # ══════════════════════════════════════════════════════════

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        lines = await self._collect_custom_metrics()
        return web.Response(text="\n".join(lines) + "\n", content_type="text/plain")

    async def _handle_health(self, _request: web.Request) -> web.Response:
        details = await self._get_health_details()
        return web.json_response({"status": "ok", "version": __version__, **details})

    async def _collect_custom_metrics(self) -> list[str]:
        """Collect hitball-specific Prometheus metrics."""
        lines: list[str] = []
        handler = self._app.chat_handler
        store = self._app.store

        # ── Counters ─────────────────────────────────────────
        if handler is not None:
            lines.append(f"hitball_updates_processed_total {handler.updates_processed}")
            lines.append(f"hitball_commands_processed_total {handler.commands_processed}")
            lines.append(f"hitball_hits_total {handler.hits_total}")
            lines.append(f"hitball_rate_limited_total {handler.rate_limited_total}")
            lines.append(f"hitball_penalties_total {handler.penalties_total}")

        # ── Store gauges ─────────────────────────────────────
        if store is not None:
            lines.append(f"hitball_tracked_identities {len(store)}")
            lines.append(f"hitball_total_hits {store.total_hits()}")

        lines.append(f"hitball_uptime_seconds {self._app.uptime_seconds:.0f}")
        return lines

    async def _get_health_details(self) -> dict[str, Any]:
        """Return health details for the /health endpoint."""
        store = self._app.store
        return {
            "storage": str(self._app.config.storage.path) if self._app.config else None,
            "tracked_identities": len(store) if store is not None else 0,
            "polling": self._app.running,
        }
