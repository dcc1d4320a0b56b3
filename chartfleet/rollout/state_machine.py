"""
Staged rollout state machine.

Each pass decides, from the current candidates alone, which clusters get a
release created or refreshed. Progress is persisted in the deployment's
status.rollout (count of clusters handled, current step size) and only ever
grows; a new batch starts only when every existing release is Ready.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from chartfleet import conditions
from chartfleet.audit import audit_rollout_action
from chartfleet.logging_config import log_rollout_operation
from chartfleet.models.chart_deployment import (
    ROLLOUT_COMPLETED_CONDITION,
    ROLLOUT_NOT_COMPLETE_REASON,
    ROLLOUT_NOT_USED_MESSAGE,
    ROLLOUT_NOT_USED_REASON,
    ChartDeployment,
    RolloutOptions,
    RolloutState,
)
from chartfleet.models.cluster import Cluster
from chartfleet.models.cluster_release import ClusterRelease
from chartfleet.models.condition import CONDITION_TRUE, SEVERITY_INFO, Condition
from chartfleet.result import DONE, REQUEUE, ReconcileResult
from chartfleet.rollout.planner import (
    RolloutCandidate,
    build_rollout_candidates,
    compute_next_step_size,
    resolve_step,
)

logger = logging.getLogger(__name__)

ReconcileForCluster = Callable[[ChartDeployment, Cluster], Awaitable[None]]

PHASE_INSTALL = "install"
PHASE_UPGRADE = "upgrade"


class RolloutPhase(str, Enum):
    """Readiness state of the releases created so far."""

    UNKNOWN = "Unknown"
    WAITING_FOR_READINESS = "WaitingForReadiness"
    ADVANCE_READY = "AdvanceReady"


def determine_rollout_phase(candidates: Sequence[RolloutCandidate]) -> RolloutPhase:
    """
    Derive the rollout state from candidate metadata.

    Unknown when no candidate has a release yet, WaitingForReadiness when any
    existing release is not Ready, AdvanceReady otherwise.
    """
    existing = [c for c in candidates if c.has_release]
    if not existing:
        return RolloutPhase.UNKNOWN
    if any(not c.release_ready for c in existing):
        return RolloutPhase.WAITING_FOR_READINESS
    return RolloutPhase.ADVANCE_READY


def select_rollout_options(
    deployment: ChartDeployment,
) -> Tuple[Optional[str], Optional[RolloutOptions]]:
    """
    Pick the rollout phase for the deployment's current generation.

    Generation 1 uses the install policy, later generations the upgrade
    policy. Returns (None, None) when no policy applies.
    """
    rollout = deployment.spec.rollout
    if rollout is None:
        return None, None
    if deployment.metadata.generation == 1 and rollout.install is not None:
        return PHASE_INSTALL, rollout.install
    if deployment.metadata.generation > 1 and rollout.upgrade is not None:
        return PHASE_UPGRADE, rollout.upgrade
    return None, None


class RolloutStateMachine:
    """Decides which clusters are reconciled on each pass."""

    def __init__(self, reconcile_for_cluster: ReconcileForCluster):
        """
        Args:
            reconcile_for_cluster: Creates or refreshes the release of one cluster
        """
        self.reconcile_for_cluster = reconcile_for_cluster

    async def reconcile(
        self,
        deployment: ChartDeployment,
        clusters: Sequence[Cluster],
        releases: Sequence[ClusterRelease],
    ) -> ReconcileResult:
        """
        Run one pass over the selected clusters.

        Args:
            deployment: Deployment being reconciled, status mutated in place
            clusters: Currently selected clusters
            releases: Releases currently owned by the deployment

        Returns:
            Whether another pass is needed
        """
        candidates = build_rollout_candidates(clusters, releases)
        phase_name, options = select_rollout_options(deployment)

        if phase_name is None:
            return await self._reconcile_without_rollout(deployment, candidates)
        return await self._reconcile_rollout(deployment, candidates, phase_name, options)

    async def _reconcile_without_rollout(
        self, deployment: ChartDeployment, candidates: List[RolloutCandidate]
    ) -> ReconcileResult:
        for candidate in candidates:
            await self.reconcile_for_cluster(deployment, candidate.cluster)

        conditions.set_condition(
            deployment,
            Condition(
                type=ROLLOUT_COMPLETED_CONDITION,
                status=CONDITION_TRUE,
                reason=ROLLOUT_NOT_USED_REASON,
                severity=SEVERITY_INFO,
                message=ROLLOUT_NOT_USED_MESSAGE,
            ),
        )
        return DONE

    async def _reconcile_rollout(
        self,
        deployment: ChartDeployment,
        candidates: List[RolloutCandidate],
        phase_name: str,
        options: Optional[RolloutOptions],
    ) -> ReconcileResult:
        if options is None:
            return DONE

        key = deployment.namespaced_name
        total = len(candidates)
        existing = sum(1 for c in candidates if c.has_release)
        state = deployment.status.rollout
        count = state.count if state is not None else 0
        step_size = state.step_size if state is not None else 0

        if count != existing:
            # Releases were deselected or removed, or a status write was lost after creates
            logger.info(f"Resyncing rollout count of {key} from {count} to {existing}")
            count = existing
            if state is None:
                state = RolloutState(count=existing, step_size=existing)
                deployment.status.rollout = state
                step_size = existing
            else:
                state.count = existing

        if count == total:
            was_completed = conditions.is_true(deployment, ROLLOUT_COMPLETED_CONDITION)
            conditions.mark_true(deployment, ROLLOUT_COMPLETED_CONDITION)
            if not was_completed:
                details = {"phase": phase_name, "count": count}
                log_rollout_operation("rollout_completed", key, details)
                audit_rollout_action("rollout_completed", key, details)
            return DONE

        conditions.mark_false(
            deployment,
            ROLLOUT_COMPLETED_CONDITION,
            ROLLOUT_NOT_COMPLETE_REASON,
            SEVERITY_INFO,
            "%d cluster releases not yet rolled out",
            total - count,
        )

        rollout_phase = determine_rollout_phase(candidates)
        logger.debug(
            f"Rollout of {key} ({phase_name}): state={rollout_phase.value}, "
            f"count={count}/{total}, step_size={step_size}, existing={existing}"
        )

        if rollout_phase == RolloutPhase.UNKNOWN:
            return await self._start_batch(deployment, candidates, options, existing, phase_name)
        if rollout_phase == RolloutPhase.WAITING_FOR_READINESS:
            return await self._wait_for_readiness(deployment, candidates)
        return await self._advance_batch(
            deployment, candidates, options, count, step_size, phase_name
        )

    async def _start_batch(
        self,
        deployment: ChartDeployment,
        candidates: List[RolloutCandidate],
        options: RolloutOptions,
        existing: int,
        phase_name: str,
    ) -> ReconcileResult:
        step = resolve_step(options.step_init, len(candidates))
        if existing == step:
            # Wait for the releases to report readiness
            return REQUEUE

        processed = 0
        try:
            for candidate in candidates[:step]:
                await self.reconcile_for_cluster(deployment, candidate.cluster)
                processed += 1
        finally:
            # Releases created before a failure still count
            deployment.status.rollout = RolloutState(count=processed, step_size=step)

        key = deployment.namespaced_name
        details = {"phase": phase_name, "count": processed, "step_size": step}
        log_rollout_operation("batch_started", key, details)
        audit_rollout_action("batch_started", key, details)
        return REQUEUE

    async def _wait_for_readiness(
        self, deployment: ChartDeployment, candidates: List[RolloutCandidate]
    ) -> ReconcileResult:
        for candidate in candidates:
            if candidate.has_release:
                await self.reconcile_for_cluster(deployment, candidate.cluster)
        return REQUEUE

    async def _advance_batch(
        self,
        deployment: ChartDeployment,
        candidates: List[RolloutCandidate],
        options: RolloutOptions,
        count: int,
        step_size: int,
        phase_name: str,
    ) -> ReconcileResult:
        new_step_size = compute_next_step_size(step_size, options, len(candidates))
        existing = sum(1 for c in candidates if c.has_release)
        key = deployment.namespaced_name

        created = 0
        try:
            for candidate in candidates:
                if candidate.has_release:
                    if not candidate.release_ready:
                        logger.warning(
                            f"Release for {candidate.identity} of {key} is no longer Ready, "
                            "holding the batch"
                        )
                        break
                    continue
                if existing + created >= new_step_size:
                    break
                await self.reconcile_for_cluster(deployment, candidate.cluster)
                created += 1
        finally:
            deployment.status.rollout = RolloutState(
                count=count + created, step_size=new_step_size
            )

        details = {
            "phase": phase_name,
            "created": created,
            "count": count + created,
            "step_size": new_step_size,
        }
        log_rollout_operation("batch_advanced", key, details)
        audit_rollout_action("batch_advanced", key, details)
        return REQUEUE
