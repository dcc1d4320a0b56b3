"""
ChartFleet manager.

Wires the store, reconciler and controller together from configuration and
runs them, with the status API alongside, until a shutdown signal.
"""

import asyncio
import logging
import signal
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from chartfleet.audit import configure_audit
from chartfleet.config.settings import ChartFleetConfig
from chartfleet.controller import Controller
from chartfleet.logging_config import LogContext
from chartfleet.reconciler.chart_deployment import ChartDeploymentReconciler
from chartfleet.store import ResourceStore, create_store

logger = logging.getLogger(__name__)


class ChartFleetManager:
    """Main manager class for ChartFleet."""

    def __init__(
        self, config: Optional[ChartFleetConfig] = None, store: Optional[ResourceStore] = None
    ):
        """
        Initialize manager.

        Args:
            config: Configuration object, defaults are used if omitted
            store: Resource store, built from config.store if omitted
        """
        self.config = config or ChartFleetConfig()
        configure_audit(self.config.audit.enabled, self.config.audit.path)

        self.store = store or create_store(self.config.store)
        self.reconciler = ChartDeploymentReconciler(self.store)
        self.controller = Controller(self.store, self.reconciler.reconcile, self.config.controller)

        self._running = False
        self._start_time: Optional[datetime] = None
        self._shutdown_event = asyncio.Event()
        self._background_tasks: Set[asyncio.Task] = set()

    async def start(self) -> None:
        """Start all manager services."""
        logger.info("Starting ChartFleet...")

        self._running = True
        self._start_time = datetime.now(timezone.utc)

        await self.controller.start()

        if self.config.api.enabled:
            task = asyncio.create_task(self._start_api_server())
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        logger.info("ChartFleet started successfully")

    async def _start_api_server(self) -> None:
        """Start the FastAPI server for the status API."""
        try:
            import uvicorn

            from chartfleet.api.routes import create_app

            app = create_app(self)
            config = uvicorn.Config(
                app,
                host=self.config.api.host,
                port=self.config.api.port,
                log_level="warning",
            )
            server = uvicorn.Server(config)

            logger.info(f"Starting API server on {self.config.api.host}:{self.config.api.port}")
            await server.serve()

        except Exception as e:
            logger.error(f"Failed to start API server: {e}")

    async def stop(self) -> None:
        """Stop all manager services."""
        logger.info("Stopping ChartFleet...")

        self._running = False
        await self.controller.stop()

        for task in list(self._background_tasks):
            task.cancel()
        await asyncio.gather(*self._background_tasks, return_exceptions=True)

        self._shutdown_event.set()
        logger.info("ChartFleet stopped")

    async def run(self) -> None:
        """Run the manager until shutdown signal."""
        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Shutdown signal received")
            self._shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, handle_signal)

        try:
            await self.start()
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    async def run_once(self) -> int:
        """
        Reconcile every ChartDeployment a single time.

        Returns:
            Number of deployments whose pass failed
        """
        keys = await self.controller.list_deployment_keys()
        logger.info(f"Reconciling {len(keys)} ChartDeployments once")

        failures = 0
        for key in keys:
            with LogContext(deployment=str(key)):
                try:
                    result = await self.reconciler.reconcile(key)
                    logger.info(f"Reconciled {key} (requeue={result.wants_requeue})")
                except Exception as e:
                    failures += 1
                    logger.error(f"Reconcile of {key} failed: {e}")
        return failures

    def get_status(self) -> Dict[str, Any]:
        """Get current manager status."""
        uptime_seconds = None
        if self._start_time:
            delta = datetime.now(timezone.utc) - self._start_time
            uptime_seconds = int(delta.total_seconds())

        return {
            "running": self._running,
            "uptime_seconds": uptime_seconds,
            "start_time": self._start_time.isoformat() if self._start_time else None,
            "store_backend": self.config.store.backend,
            "controller": self.controller.get_status(),
        }
