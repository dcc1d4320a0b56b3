"""
Tests for the work queue and controller runtime.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from chartfleet.config.settings import ControllerConfig
from chartfleet.controller import Controller, WorkQueue
from chartfleet.errors import StoreIOError
from chartfleet.models import ObjectKey
from chartfleet.reconciler import ChartDeploymentReconciler
from chartfleet.result import DONE, REQUEUE, ReconcileResult

KEY = ObjectKey(namespace="default", name="podinfo")
OTHER = ObjectKey(namespace="default", name="other")


class TestWorkQueue:
    """Test deduplication, exclusivity and backoff."""

    @pytest.mark.asyncio
    async def test_add_deduplicates(self):
        queue = WorkQueue()
        queue.add(KEY)
        queue.add(KEY)
        queue.add(OTHER)

        assert len(queue) == 2
        assert await queue.get() == KEY
        assert await queue.get() == OTHER

    @pytest.mark.asyncio
    async def test_key_added_while_processing_is_requeued_after_done(self):
        queue = WorkQueue()
        queue.add(KEY)
        key = await queue.get()

        queue.add(KEY)
        assert len(queue) == 0
        assert queue.processing == {KEY}

        queue.done(key)
        assert len(queue) == 1
        assert await queue.get() == KEY

    @pytest.mark.asyncio
    async def test_done_without_readd_leaves_queue_empty(self):
        queue = WorkQueue()
        queue.add(KEY)
        queue.done(await queue.get())
        assert len(queue) == 0
        assert queue.processing == set()

    @pytest.mark.asyncio
    async def test_get_waits_for_add(self):
        queue = WorkQueue()
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        assert not waiter.done()

        queue.add(KEY)
        assert await asyncio.wait_for(waiter, timeout=1) == KEY

    @pytest.mark.asyncio
    async def test_shutdown_releases_waiters(self):
        queue = WorkQueue()
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)

        queue.shutdown()

        assert await asyncio.wait_for(waiter, timeout=1) is None
        queue.add(KEY)
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_add_after_delays(self):
        queue = WorkQueue()
        queue.add_after(KEY, 0.05)
        assert len(queue) == 0

        await asyncio.sleep(0.1)
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_add_after_earlier_wins(self):
        queue = WorkQueue()
        queue.add_after(KEY, 10)
        queue.add_after(KEY, 0.01)

        await asyncio.sleep(0.05)
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_add_after_non_positive_is_immediate(self):
        queue = WorkQueue()
        queue.add_after(KEY, 0)
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_backoff(self):
        queue = WorkQueue(backoff_base=1.0, backoff_max=5.0)

        delays = [queue.add_rate_limited(KEY) for _ in range(5)]

        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]
        assert queue.failures(KEY) == 5
        queue.forget(KEY)
        assert queue.failures(KEY) == 0
        queue.shutdown()


class TestController:
    """Test processing results and errors."""

    @pytest.fixture
    def settings(self):
        return ControllerConfig(
            max_concurrent_reconciles=2,
            requeue_after_seconds=30,
            backoff_base_seconds=1,
            backoff_max_seconds=60,
        )

    @pytest.mark.asyncio
    async def test_success_forgets_failures(self, store, settings):
        controller = Controller(store, AsyncMock(return_value=DONE), settings)
        controller.queue.add_rate_limited(KEY)

        await controller.process(KEY)

        assert controller.queue.failures(KEY) == 0
        status = controller.get_status()
        assert status["reconciles"] == 1
        assert status["errors"] == 0
        controller.queue.shutdown()

    @pytest.mark.asyncio
    async def test_requeue_uses_default_delay(self, store, settings):
        controller = Controller(store, AsyncMock(return_value=REQUEUE), settings)

        with patch.object(controller.queue, "add_after") as add_after:
            await controller.process(KEY)

        add_after.assert_called_once_with(KEY, 30)

    @pytest.mark.asyncio
    async def test_requeue_after_uses_given_delay(self, store, settings):
        reconcile = AsyncMock(return_value=ReconcileResult(requeue_after=2.5))
        controller = Controller(store, reconcile, settings)

        with patch.object(controller.queue, "add_after") as add_after:
            await controller.process(KEY)

        add_after.assert_called_once_with(KEY, 2.5)

    @pytest.mark.asyncio
    async def test_done_does_not_requeue(self, store, settings):
        controller = Controller(store, AsyncMock(return_value=DONE), settings)

        with patch.object(controller.queue, "add_after") as add_after:
            await controller.process(KEY)

        add_after.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_backs_off(self, store, settings):
        reconcile = AsyncMock(side_effect=StoreIOError("store unavailable", status=503))
        controller = Controller(store, reconcile, settings)

        with patch.object(controller.queue, "add_after") as add_after:
            await controller.process(KEY)
            await controller.process(KEY)

        assert [c.args for c in add_after.call_args_list] == [(KEY, 1), (KEY, 2)]
        status = controller.get_status()
        assert status["errors"] == 2
        assert status["failing"] == {"default/podinfo": "store unavailable"}

    @pytest.mark.asyncio
    async def test_namespace_filter(self, store):
        settings = ControllerConfig(namespaces=["team-a"])
        controller = Controller(store, AsyncMock(return_value=DONE), settings)

        controller.enqueue(ObjectKey(namespace="team-a", name="app"))
        controller.enqueue(ObjectKey(namespace="team-b", name="app"))

        assert len(controller.queue) == 1

    @pytest.mark.asyncio
    async def test_enqueue_all(self, store, make_deployment, settings):
        await store.create(make_deployment("a"))
        await store.create(make_deployment("b", namespace="other"))
        controller = Controller(store, AsyncMock(return_value=DONE), settings)

        assert await controller.enqueue_all() == 2
        assert len(controller.queue) == 2

    @pytest.mark.asyncio
    async def test_watches_drive_reconciles(
        self, store, make_deployment, make_cluster, mark_ready
    ):
        """Running controller reconciles a new deployment and reacts to release readiness."""
        settings = ControllerConfig(
            max_concurrent_reconciles=2,
            requeue_after_seconds=60,
            resync_interval_seconds=60,
        )
        reconciler = ChartDeploymentReconciler(store)
        controller = Controller(store, reconciler.reconcile, settings)
        await store.create(make_cluster("cluster-00", {"env": "prod"}))

        await controller.start()
        try:
            await asyncio.sleep(0.05)
            deployment = await store.create(make_deployment())

            async def wait_for(predicate):
                for _ in range(100):
                    if await predicate():
                        return True
                    await asyncio.sleep(0.02)
                return False

            async def has_release():
                return len(await reconciler.registry.list_owned(deployment)) == 1

            assert await wait_for(has_release)

            (release,) = await reconciler.registry.list_owned(deployment)
            await mark_ready(release)

            async def is_ready():
                stored = await store.get(type(deployment), deployment.key)
                return any(
                    c.type == "Ready" and c.status == "True" for c in stored.status.conditions
                )

            assert await wait_for(is_ready)
        finally:
            await controller.stop()

        assert not controller.get_status()["running"]
