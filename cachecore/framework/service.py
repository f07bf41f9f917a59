"""
Base AsyncService class for the cache service.

Owns the process lifecycle: one shared outbound HTTP session, the aiohttp
server with the framework routes (``/health``, ``/health/live``,
``/metrics``), a background health gauge and signal-driven shutdown.
Subclasses wire their components in ``_startup_hook`` and add routes in
``_setup_service_routes``.
"""

import asyncio
import signal
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp
from aiohttp import web
import structlog

from .config import ServiceConfig
from .health import HealthChecker
from .metrics import MetricsCollector


logger = structlog.get_logger(__name__)


class AsyncService(ABC):
    """Base class for the long-running cache service process."""

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.logger = structlog.get_logger(config.service_name).bind(service=config.service_name)

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self.session: Optional[aiohttp.ClientSession] = None

        self.health_checker = HealthChecker(config)
        self.metrics = MetricsCollector(config.service_name)

        self.shutdown_event = asyncio.Event()
        self.health_task: Optional[asyncio.Task] = None
        self._stopped = False

    def build_app(self) -> web.Application:
        """Create the web application with framework and service routes."""
        self.app = web.Application(middlewares=[self._metrics_middleware])
        self.app.router.add_get("/health", self._health_handler)
        self.app.router.add_get("/health/live", self._liveness_handler)
        self.app.router.add_get("/metrics", self._metrics_handler)
        self._setup_service_routes()
        return self.app

    def _setup_service_routes(self) -> None:
        """Register service-specific routes on ``self.app``. Override in subclasses."""

    @abstractmethod
    async def _startup_hook(self) -> None:
        """Build service components. ``self.session`` is open at this point."""

    @abstractmethod
    async def _shutdown_hook(self) -> None:
        """Release service components."""

    async def startup(self) -> None:
        """Open the outbound session, wire components and start serving."""
        self.logger.info("Starting service", environment=self.config.environment)

        timeout = aiohttp.ClientTimeout(total=self.config.upstream.request_timeout)
        self.session = aiohttp.ClientSession(timeout=timeout)

        # routes are registered from components, so they must exist first
        await self._startup_hook()
        self.build_app()

        self.metrics.update_service_info(version=self.config.version, environment=self.config.environment)
        self.health_task = asyncio.create_task(self._health_gauge_loop())
        await self._start_http_server()

    async def shutdown(self) -> None:
        """Stop serving and release resources. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        self.logger.info("Shutting down service")

        if self.site:
            await self.site.stop()

        await self._shutdown_hook()

        if self.health_task:
            self.health_task.cancel()
            try:
                await self.health_task
            except asyncio.CancelledError:
                pass

        if self.runner:
            await self.runner.cleanup()
        if self.session:
            await self.session.close()

        self.shutdown_event.set()
        self.logger.info("Service shutdown complete")

    async def run(self) -> None:
        """Run the service until SIGTERM or SIGINT arrives."""
        try:
            self._install_signal_handlers()
            await self.startup()
            await self.shutdown_event.wait()
        except Exception as e:
            self.logger.error("Service error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    @asynccontextmanager
    async def get_session(self):
        """Borrow the shared outbound HTTP session."""
        if not self.session:
            raise RuntimeError("Service not started")
        yield self.session

    async def _start_http_server(self) -> None:
        observability = self.config.observability
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, host=observability.host, port=observability.health_port)
        await self.site.start()
        self.logger.info("Service started", host=observability.host, port=observability.health_port)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self._on_signal, signum)

    def _on_signal(self, signum: int) -> None:
        self.logger.info("Received shutdown signal", signal=signum)
        self.shutdown_event.set()

    async def _health_gauge_loop(self) -> None:
        """Mirror the aggregated health result into the health gauge."""
        interval = self.config.observability.health_interval
        while not self.shutdown_event.is_set():
            try:
                health = await self.health_checker.check_health()
                self.metrics.set_health_status(health["healthy"])
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Health gauge update failed", error=str(e))
            await asyncio.sleep(interval)

    @web.middleware
    async def _metrics_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        started = time.time()
        status = 500
        try:
            response = await handler(request)
            status = response.status
            return response
        except web.HTTPException as e:
            status = e.status
            raise
        finally:
            resource = request.match_info.route.resource
            endpoint = resource.canonical if resource is not None else "unmatched"
            self.metrics.record_request(request.method, endpoint, str(status), time.time() - started)

    async def _health_handler(self, request: web.Request) -> web.Response:
        health = await self.health_checker.check_health()
        return web.json_response(health, status=200 if health["healthy"] else 503)

    async def _liveness_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"alive": True})

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            body=self.metrics.get_metrics(),
            headers={"Content-Type": self.metrics.get_content_type()},
        )
