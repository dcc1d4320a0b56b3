"""
Tests for the staged rollout state machine.

The per-cluster reconcile callback is mocked, so these tests exercise batch
decisions alone. End-to-end passes against a store live in test_reconciler.
"""

import pytest
from unittest.mock import AsyncMock

from chartfleet import conditions
from chartfleet.errors import ScalingComputationError, StoreIOError
from chartfleet.models import (
    ClusterReference,
    ClusterRelease,
    ClusterReleaseSpec,
    Condition,
    ObjectMeta,
    RolloutState,
)
from chartfleet.rollout.planner import build_rollout_candidates
from chartfleet.rollout.state_machine import (
    RolloutPhase,
    RolloutStateMachine,
    determine_rollout_phase,
    select_rollout_options,
)


def release_for(cluster, ready=False):
    release = ClusterRelease(
        metadata=ObjectMeta(name=f"podinfo-{cluster.metadata.name}"),
        spec=ClusterReleaseSpec(
            cluster_ref=ClusterReference.for_cluster(cluster),
            repo_url="https://stefanprodan.github.io/podinfo",
            chart_name="podinfo",
        ),
    )
    if ready:
        release.status.conditions = [Condition(type="Ready", status="True")]
    return release


def reconciled_names(callback):
    return [call.args[1].metadata.name for call in callback.await_args_list]


@pytest.fixture
def clusters(make_cluster):
    # Deliberately unsorted
    return [make_cluster(f"cluster-{i:02d}") for i in (7, 2, 9, 0, 5, 1, 8, 3, 6, 4)]


@pytest.fixture
def callback():
    return AsyncMock()


@pytest.fixture
def machine(callback):
    return RolloutStateMachine(callback)


class TestDetermineRolloutPhase:
    """Test deriving the rollout state from candidates."""

    def test_unknown_without_releases(self, clusters):
        candidates = build_rollout_candidates(clusters, [])
        assert determine_rollout_phase(candidates) == RolloutPhase.UNKNOWN

    def test_unknown_with_no_candidates(self):
        assert determine_rollout_phase([]) == RolloutPhase.UNKNOWN

    def test_waiting_when_any_release_not_ready(self, clusters):
        releases = [release_for(clusters[0], ready=True), release_for(clusters[1])]
        candidates = build_rollout_candidates(clusters, releases)
        assert determine_rollout_phase(candidates) == RolloutPhase.WAITING_FOR_READINESS

    def test_advance_when_all_releases_ready(self, clusters):
        releases = [release_for(c, ready=True) for c in clusters[:3]]
        candidates = build_rollout_candidates(clusters, releases)
        assert determine_rollout_phase(candidates) == RolloutPhase.ADVANCE_READY


class TestSelectRolloutOptions:
    """Test install/upgrade policy selection by generation."""

    def test_no_policy(self, make_deployment):
        assert select_rollout_options(make_deployment()) == (None, None)

    def test_install_on_first_generation(self, make_deployment):
        deployment = make_deployment(install={"step_init": 2}, upgrade={"step_init": 1})
        phase, options = select_rollout_options(deployment)
        assert phase == "install"
        assert options.step_init == 2

    def test_upgrade_on_later_generations(self, make_deployment):
        deployment = make_deployment(install={"step_init": 2}, upgrade={"step_init": 1})
        deployment.metadata.generation = 3
        phase, options = select_rollout_options(deployment)
        assert phase == "upgrade"
        assert options.step_init == 1

    def test_missing_phase_policy(self, make_deployment):
        deployment = make_deployment(install={"step_init": 2})
        deployment.metadata.generation = 2
        assert select_rollout_options(deployment) == (None, None)


class TestWithoutRollout:
    """Deployments without a rollout policy reconcile every cluster each pass."""

    @pytest.mark.asyncio
    async def test_reconciles_all_clusters_sorted(
        self, machine, callback, clusters, make_deployment
    ):
        deployment = make_deployment()

        result = await machine.reconcile(deployment, clusters, [])

        assert not result.wants_requeue
        assert reconciled_names(callback) == [f"cluster-{i:02d}" for i in range(10)]
        condition = conditions.get(deployment, "ClusterReleasesRolloutCompleted")
        assert condition.status == "True"
        assert condition.reason == "RolloutNotUsed"
        assert condition.severity == "Info"
        assert deployment.status.rollout is None

    @pytest.mark.asyncio
    async def test_upgrade_without_upgrade_policy_reconciles_all(
        self, machine, callback, clusters, make_deployment
    ):
        deployment = make_deployment(install={"step_init": 1})
        deployment.metadata.generation = 2

        await machine.reconcile(deployment, clusters, [])

        assert callback.await_count == 10


class TestStartBatch:
    """Unknown state: the first batch of a rollout."""

    @pytest.mark.asyncio
    async def test_first_batch_percentage(self, machine, callback, clusters, make_deployment):
        deployment = make_deployment(install={"step_init": "20%"})

        result = await machine.reconcile(deployment, clusters, [])

        assert result.requeue
        assert reconciled_names(callback) == ["cluster-00", "cluster-01"]
        assert deployment.status.rollout == RolloutState(count=2, step_size=2)
        condition = conditions.get(deployment, "ClusterReleasesRolloutCompleted")
        assert condition.status == "False"
        assert condition.message == "10 cluster releases not yet rolled out"

    @pytest.mark.asyncio
    async def test_step_larger_than_fleet(self, machine, callback, clusters, make_deployment):
        deployment = make_deployment(install={"step_init": 50})

        await machine.reconcile(deployment, clusters, [])

        assert callback.await_count == 10
        assert deployment.status.rollout == RolloutState(count=10, step_size=50)

    @pytest.mark.asyncio
    async def test_zero_step_requeues_without_persisting(
        self, machine, callback, clusters, make_deployment
    ):
        deployment = make_deployment(install={"step_init": 0})

        result = await machine.reconcile(deployment, clusters, [])

        assert result.requeue
        callback.assert_not_awaited()
        assert deployment.status.rollout is None

    @pytest.mark.asyncio
    async def test_invalid_step_raises(self, machine, callback, clusters, make_deployment):
        deployment = make_deployment(install={"step_init": "a fifth"})

        with pytest.raises(ScalingComputationError):
            await machine.reconcile(deployment, clusters, [])
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_batch_start_is_audited(
        self, machine, clusters, make_deployment, audit_to_tmp
    ):
        deployment = make_deployment(install={"step_init": 3})

        await machine.reconcile(deployment, clusters, [])

        entries = audit_to_tmp.read_text().splitlines()
        assert any('"batch_started"' in line for line in entries)


class TestWaitForReadiness:
    """WaitingForReadiness: only existing releases are touched."""

    @pytest.mark.asyncio
    async def test_no_new_releases_while_batch_not_ready(
        self, machine, callback, clusters, make_deployment
    ):
        deployment = make_deployment(install={"step_init": 2, "step_increment": 2})
        deployment.status.rollout = RolloutState(count=2, step_size=2)
        by_name = {c.metadata.name: c for c in clusters}
        releases = [
            release_for(by_name["cluster-00"], ready=True),
            release_for(by_name["cluster-01"]),
        ]

        result = await machine.reconcile(deployment, clusters, releases)

        assert result.requeue
        assert reconciled_names(callback) == ["cluster-00", "cluster-01"]
        assert deployment.status.rollout == RolloutState(count=2, step_size=2)


class TestAdvanceBatch:
    """AdvanceReady: the step grows and the next clusters get releases."""

    @pytest.mark.asyncio
    async def test_advance_within_limit(self, machine, callback, clusters, make_deployment):
        deployment = make_deployment(
            install={"step_init": "20%", "step_increment": "20%", "step_limit": "50%"}
        )
        deployment.status.rollout = RolloutState(count=2, step_size=2)
        by_name = {c.metadata.name: c for c in clusters}
        releases = [release_for(by_name[n], ready=True) for n in ("cluster-00", "cluster-01")]

        result = await machine.reconcile(deployment, clusters, releases)

        assert result.requeue
        assert reconciled_names(callback) == ["cluster-02", "cluster-03"]
        assert deployment.status.rollout == RolloutState(count=4, step_size=4)

    @pytest.mark.asyncio
    async def test_limit_caps_growth(self, machine, callback, clusters, make_deployment):
        deployment = make_deployment(
            install={"step_init": "20%", "step_increment": "20%", "step_limit": "50%"}
        )
        deployment.status.rollout = RolloutState(count=4, step_size=4)
        by_name = {c.metadata.name: c for c in clusters}
        releases = [release_for(by_name[f"cluster-{i:02d}"], ready=True) for i in range(4)]

        await machine.reconcile(deployment, clusters, releases)

        assert reconciled_names(callback) == ["cluster-04"]
        assert deployment.status.rollout == RolloutState(count=5, step_size=5)

    @pytest.mark.asyncio
    async def test_step_limit_holds_progress_at_limit(
        self, machine, callback, clusters, make_deployment
    ):
        """
        A limit above step_init but below the fleet size stalls the rollout.

        Once the step reaches the limit no further releases are created, so the
        rollout never completes and is requeued indefinitely.
        """
        deployment = make_deployment(
            install={"step_init": "20%", "step_increment": "20%", "step_limit": "50%"}
        )
        deployment.status.rollout = RolloutState(count=5, step_size=5)
        by_name = {c.metadata.name: c for c in clusters}
        releases = [release_for(by_name[f"cluster-{i:02d}"], ready=True) for i in range(5)]

        result = await machine.reconcile(deployment, clusters, releases)

        assert result.requeue
        callback.assert_not_awaited()
        assert deployment.status.rollout == RolloutState(count=5, step_size=5)
        assert not conditions.is_true(deployment, "ClusterReleasesRolloutCompleted")

    @pytest.mark.asyncio
    async def test_completes_after_last_batch(self, machine, callback, clusters, make_deployment):
        deployment = make_deployment(install={"step_init": 5, "step_increment": 5})
        deployment.status.rollout = RolloutState(count=10, step_size=10)
        releases = [release_for(c, ready=True) for c in clusters]

        result = await machine.reconcile(deployment, clusters, releases)

        assert not result.wants_requeue
        callback.assert_not_awaited()
        assert conditions.is_true(deployment, "ClusterReleasesRolloutCompleted")

    @pytest.mark.asyncio
    async def test_completion_audited_once(
        self, machine, clusters, make_deployment, audit_to_tmp
    ):
        deployment = make_deployment(install={"step_init": 10})
        deployment.status.rollout = RolloutState(count=10, step_size=10)
        releases = [release_for(c, ready=True) for c in clusters]

        await machine.reconcile(deployment, clusters, releases)
        await machine.reconcile(deployment, clusters, releases)

        entries = audit_to_tmp.read_text().splitlines()
        assert sum('"rollout_completed"' in line for line in entries) == 1

    @pytest.mark.asyncio
    async def test_no_skip_ahead_past_unready_release(
        self, machine, callback, clusters, make_deployment
    ):
        """A release in the batch is never bypassed by clusters sorted after it."""
        deployment = make_deployment(install={"step_init": 2, "step_increment": 4})
        deployment.status.rollout = RolloutState(count=2, step_size=2)
        by_name = {c.metadata.name: c for c in clusters}
        ready = [release_for(by_name[n], ready=True) for n in ("cluster-00", "cluster-01")]

        candidates = build_rollout_candidates(clusters, ready)
        assert determine_rollout_phase(candidates) == RolloutPhase.ADVANCE_READY

        await machine.reconcile(deployment, clusters, ready)
        created = set(reconciled_names(callback))
        assert created == {"cluster-02", "cluster-03", "cluster-04", "cluster-05"}

        callback.reset_mock()
        unready = ready + [release_for(by_name[n]) for n in sorted(created)]
        await machine.reconcile(deployment, clusters, unready)

        assert set(reconciled_names(callback)) <= {r.spec.cluster_ref.name for r in unready}


class TestRolloutProperties:
    """Invariants over repeated passes."""

    async def _drive(self, clusters, make_deployment):
        """Run passes to completion, marking every release Ready between passes."""
        history = []
        created = []
        releases = {}

        async def create_release(deployment, cluster):
            if cluster.metadata.name not in releases:
                created.append(cluster.metadata.name)
                releases[cluster.metadata.name] = release_for(cluster)

        machine = RolloutStateMachine(create_release)
        deployment = make_deployment(install={"step_init": "10%", "step_increment": 2})

        for _ in range(20):
            result = await machine.reconcile(deployment, clusters, list(releases.values()))
            history.append(deployment.status.rollout.count)
            for release in releases.values():
                release.status.conditions = [Condition(type="Ready", status="True")]
            if not result.wants_requeue:
                break
        return deployment, history, created

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, clusters, make_deployment):
        deployment, history, created = await self._drive(clusters, make_deployment)

        assert history == sorted(history)
        assert history == [1, 3, 5, 7, 9, 10, 10]
        assert conditions.is_true(deployment, "ClusterReleasesRolloutCompleted")
        assert created == [f"cluster-{i:02d}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_order_independent_of_input_order(self, clusters, make_deployment):
        _, _, first = await self._drive(clusters, make_deployment)
        _, _, second = await self._drive(list(reversed(clusters)), make_deployment)

        assert first == second

    @pytest.mark.asyncio
    async def test_idempotent_when_nothing_changed(
        self, machine, callback, clusters, make_deployment
    ):
        deployment = make_deployment(install={"step_init": 2, "step_increment": 2})
        deployment.status.rollout = RolloutState(count=2, step_size=2)
        by_name = {c.metadata.name: c for c in clusters}
        releases = [
            release_for(by_name["cluster-00"], ready=True),
            release_for(by_name["cluster-01"]),
        ]

        await machine.reconcile(deployment, clusters, releases)
        first = deployment.model_copy(deep=True)
        await machine.reconcile(deployment, clusters, releases)

        assert deployment.status == first.status

    @pytest.mark.asyncio
    async def test_count_clamped_when_releases_disappear(
        self, machine, callback, clusters, make_deployment
    ):
        deployment = make_deployment(install={"step_init": 2, "step_increment": 2})
        deployment.status.rollout = RolloutState(count=4, step_size=4)
        by_name = {c.metadata.name: c for c in clusters}
        releases = [release_for(by_name[n], ready=True) for n in ("cluster-00", "cluster-01")]

        await machine.reconcile(deployment, clusters, releases)

        # Clamped to 2, then advanced by step 4 + 2 = 6 minus 2 existing
        assert deployment.status.rollout == RolloutState(count=6, step_size=6)
        assert reconciled_names(callback) == [f"cluster-{i:02d}" for i in range(2, 6)]

    @pytest.mark.asyncio
    async def test_count_behind_releases_is_resynced(
        self, machine, callback, clusters, make_deployment
    ):
        deployment = make_deployment(install={"step_init": 2, "step_increment": 2})
        deployment.status.rollout = RolloutState(count=1, step_size=2)
        by_name = {c.metadata.name: c for c in clusters}
        releases = [release_for(by_name[n], ready=True) for n in ("cluster-00", "cluster-01")]

        result = await machine.reconcile(deployment, clusters, releases)

        assert result.requeue
        assert reconciled_names(callback) == ["cluster-02", "cluster-03"]
        assert deployment.status.rollout == RolloutState(count=4, step_size=4)

    @pytest.mark.asyncio
    async def test_releases_without_rollout_state_complete(
        self, machine, callback, clusters, make_deployment
    ):
        deployment = make_deployment(install={"step_init": 2, "step_increment": 2})
        releases = [release_for(c, ready=True) for c in clusters]

        result = await machine.reconcile(deployment, clusters, releases)

        assert not result.wants_requeue
        callback.assert_not_awaited()
        assert deployment.status.rollout == RolloutState(count=10, step_size=10)
        assert conditions.is_true(deployment, "ClusterReleasesRolloutCompleted")

    @pytest.mark.asyncio
    async def test_failed_create_keeps_started_batch(self, clusters, make_deployment):
        callback = AsyncMock(side_effect=[None, StoreIOError("apiserver unavailable")])
        machine = RolloutStateMachine(callback)
        deployment = make_deployment(install={"step_init": 4})

        with pytest.raises(StoreIOError):
            await machine.reconcile(deployment, clusters, [])

        assert callback.await_count == 2
        assert deployment.status.rollout == RolloutState(count=1, step_size=4)

    @pytest.mark.asyncio
    async def test_failed_create_keeps_advanced_batch(self, clusters, make_deployment):
        callback = AsyncMock(side_effect=[None, None, StoreIOError("apiserver unavailable")])
        machine = RolloutStateMachine(callback)
        deployment = make_deployment(install={"step_init": 2, "step_increment": 4})
        deployment.status.rollout = RolloutState(count=2, step_size=2)
        by_name = {c.metadata.name: c for c in clusters}
        releases = [release_for(by_name[n], ready=True) for n in ("cluster-00", "cluster-01")]

        with pytest.raises(StoreIOError):
            await machine.reconcile(deployment, clusters, releases)

        assert reconciled_names(callback) == ["cluster-02", "cluster-03", "cluster-04"]
        assert deployment.status.rollout == RolloutState(count=4, step_size=6)
