"""
Controller runtime: work queue, worker pool, watches and resync.

The work queue guarantees a key is handed to at most one worker at a time.
A key added while it is being processed is marked dirty and handed out
again once the worker is done, so no change is lost and no two passes of the
same deployment overlap.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from chartfleet.config.settings import ControllerConfig
from chartfleet.logging_config import LogContext
from chartfleet.mappers import cluster_to_deployments, release_to_deployment
from chartfleet.models.chart_deployment import ChartDeployment
from chartfleet.models.cluster import Cluster
from chartfleet.models.cluster_release import ClusterRelease
from chartfleet.models.meta import ObjectKey
from chartfleet.result import ReconcileResult
from chartfleet.store.base import ResourceStore

logger = logging.getLogger(__name__)

Reconcile = Callable[[ObjectKey], Awaitable[ReconcileResult]]

# Delay before a failed watch stream is reopened
WATCH_RESTART_SECONDS = 5.0


class WorkQueue:
    """Deduplicating, per-key exclusive queue with delayed adds and backoff."""

    def __init__(self, backoff_base: float = 0.5, backoff_max: float = 300.0):
        """
        Args:
            backoff_base: First retry delay after a failure
            backoff_max: Retry delay ceiling
        """
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._queue: Deque[ObjectKey] = deque()
        self._dirty: Set[ObjectKey] = set()
        self._processing: Set[ObjectKey] = set()
        self._failures: Dict[ObjectKey, int] = {}
        self._timers: Dict[ObjectKey, asyncio.TimerHandle] = {}
        self._not_empty = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def processing(self) -> Set[ObjectKey]:
        return set(self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: ObjectKey) -> None:
        """Queue a key unless it is already waiting."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._not_empty.set()

    def add_after(self, key: ObjectKey, delay: float) -> None:
        """Queue a key after a delay. An earlier pending add for the key wins."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()

        def _fire() -> None:
            self._timers.pop(key, None)
            self.add(key)

        self._timers[key] = loop.call_at(when, _fire)

    def add_rate_limited(self, key: ObjectKey) -> float:
        """
        Queue a key after its exponential backoff delay.

        Returns:
            The delay used, min(base * 2**failures, max)
        """
        failures = self._failures.get(key, 0)
        delay = min(self.backoff_base * (2**failures), self.backoff_max)
        self._failures[key] = failures + 1
        self.add_after(key, delay)
        return delay

    def forget(self, key: ObjectKey) -> None:
        """Reset the failure count of a key."""
        self._failures.pop(key, None)

    def failures(self, key: ObjectKey) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> Optional[ObjectKey]:
        """
        Wait for the next key and mark it as processing.

        Returns:
            The key, or None once the queue is shut down
        """
        while not self._queue:
            if self._shutting_down:
                return None
            self._not_empty.clear()
            await self._not_empty.wait()

        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: ObjectKey) -> None:
        """Finish processing a key, requeueing it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._not_empty.set()

    def shutdown(self) -> None:
        """Stop handing out keys and cancel pending delayed adds."""
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._not_empty.set()


class Controller:
    """Runs the reconcile function for every queued ChartDeployment key."""

    def __init__(self, store: ResourceStore, reconcile: Reconcile, settings: ControllerConfig):
        """
        Initialize controller.

        Args:
            store: Resource store watched for changes
            reconcile: Reconcile function for one deployment key
            settings: Worker pool and timing settings
        """
        self.store = store
        self.reconcile = reconcile
        self.settings = settings
        self.queue = WorkQueue(
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
        )
        self._tasks: Set[asyncio.Task] = set()
        self._running = False
        self._start_time: Optional[datetime] = None
        self._reconcile_count = 0
        self._error_count = 0
        self._last_errors: Dict[str, str] = {}

    def _watches_namespace(self, namespace: str) -> bool:
        return not self.settings.namespaces or namespace in self.settings.namespaces

    def enqueue(self, key: ObjectKey) -> None:
        if self._watches_namespace(key.namespace):
            self.queue.add(key)

    async def enqueue_all(self) -> int:
        """Queue every ChartDeployment in the watched namespaces."""
        keys = await self.list_deployment_keys()
        for key in keys:
            self.queue.add(key)
        return len(keys)

    async def list_deployment_keys(self) -> List[ObjectKey]:
        if not self.settings.namespaces:
            deployments = await self.store.list(ChartDeployment)
        else:
            deployments = []
            for namespace in self.settings.namespaces:
                deployments.extend(await self.store.list(ChartDeployment, namespace=namespace))
        return [d.key for d in deployments]

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        task = asyncio.create_task(coro, name=name)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def start(self) -> None:
        """Start workers, watches and the periodic resync."""
        logger.info(
            f"Starting controller with {self.settings.max_concurrent_reconciles} workers"
        )
        self._running = True
        self._start_time = datetime.now(timezone.utc)

        for i in range(self.settings.max_concurrent_reconciles):
            self._spawn(self._worker(i), f"reconcile-worker-{i}")

        self._spawn(self._watch_deployments(), "watch-chartdeployments")
        self._spawn(self._watch_clusters(), "watch-clusters")
        self._spawn(self._watch_releases(), "watch-clusterreleases")
        self._spawn(self._resync_loop(), "resync")

    async def stop(self) -> None:
        """Stop all tasks. In-flight passes are cancelled before their patch."""
        logger.info("Stopping controller...")
        self._running = False
        self.queue.shutdown()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Controller stopped")

    async def _worker(self, index: int) -> None:
        logger.debug(f"Worker {index} started")
        while True:
            key = await self.queue.get()
            if key is None:
                return
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: ObjectKey) -> None:
        """Reconcile one key and schedule its next pass."""
        self._reconcile_count += 1
        with LogContext(deployment=str(key)):
            try:
                result = await self.reconcile(key)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._error_count += 1
                self._last_errors[str(key)] = str(e)
                delay = self.queue.add_rate_limited(key)
                logger.error(f"Reconcile of {key} failed, retrying in {delay:.1f}s: {e}")
                return

        self.queue.forget(key)
        self._last_errors.pop(str(key), None)
        if result.requeue_after is not None:
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self.queue.add_after(key, self.settings.requeue_after_seconds)

    async def _consume(self, kind: type, handle: Callable[[Any], Awaitable[None]]) -> None:
        """Feed watch events of a kind to a handler, reopening the stream on failure."""
        while True:
            try:
                async for event in self.store.watch(kind):
                    await handle(event.object)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{kind.__name__} watch failed: {e}")
            await asyncio.sleep(WATCH_RESTART_SECONDS)

    async def _watch_deployments(self) -> None:
        async def handle(obj: ChartDeployment) -> None:
            self.enqueue(obj.key)

        await self._consume(ChartDeployment, handle)

    async def _watch_clusters(self) -> None:
        async def handle(obj: Cluster) -> None:
            for key in await cluster_to_deployments(self.store, obj):
                self.enqueue(key)

        await self._consume(Cluster, handle)

    async def _watch_releases(self) -> None:
        async def handle(obj: ClusterRelease) -> None:
            for key in release_to_deployment(obj):
                self.enqueue(key)

        await self._consume(ClusterRelease, handle)

    async def _resync_loop(self) -> None:
        while True:
            try:
                count = await self.enqueue_all()
                logger.debug(f"Resync queued {count} ChartDeployments")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Resync failed: {e}")
            await asyncio.sleep(self.settings.resync_interval_seconds)

    def get_status(self) -> Dict[str, Any]:
        """Get current controller status."""
        uptime_seconds = None
        if self._start_time:
            delta = datetime.now(timezone.utc) - self._start_time
            uptime_seconds = int(delta.total_seconds())

        return {
            "running": self._running,
            "uptime_seconds": uptime_seconds,
            "workers": self.settings.max_concurrent_reconciles,
            "queue_depth": len(self.queue),
            "processing": sorted(str(k) for k in self.queue.processing),
            "reconciles": self._reconcile_count,
            "errors": self._error_count,
            "failing": dict(self._last_errors),
        }
