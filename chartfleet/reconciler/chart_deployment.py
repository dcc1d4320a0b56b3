"""
ChartDeployment reconciler.

One pass: fetch the deployment, resolve its clusters and releases, then
either tear everything down (deletion requested) or remove orphans, run the
rollout state machine and aggregate release readiness. The status is patched
at the end of every pass, including passes that fail, so conditions show
what went wrong.
"""

import logging
import time

from chartfleet import conditions
from chartfleet.audit import audit_rollout_action
from chartfleet.errors import ChartFleetError, NotFoundError, SelectorParseError, StoreIOError
from chartfleet.logging_config import log_rollout_operation
from chartfleet.models.chart_deployment import (
    CHART_DEPLOYMENT_FINALIZER,
    CLUSTER_SELECTION_FAILED_REASON,
    RELEASES_READY_CONDITION,
    ROLLOUT_COMPLETED_CONDITION,
    SPECS_UP_TO_DATE_CONDITION,
    ChartDeployment,
)
from chartfleet.models.condition import SEVERITY_ERROR
from chartfleet.models.meta import ObjectKey, add_finalizer, contains_finalizer, remove_finalizer
from chartfleet.patch import PatchHelper
from chartfleet.reconciler.deletion import delete_orphaned_releases, reconcile_delete
from chartfleet.reconciler.readiness import aggregate_release_readiness
from chartfleet.reconciler.releases import ReleaseRegistry
from chartfleet.result import DONE, ReconcileResult
from chartfleet.rollout.state_machine import RolloutStateMachine
from chartfleet.selectors import select_clusters
from chartfleet.store.base import ResourceStore
from chartfleet.utils.log_sanitizer import sanitize_object_key

logger = logging.getLogger(__name__)

# Conditions folded into the summary Ready condition
SUMMARY_CONDITIONS = (
    SPECS_UP_TO_DATE_CONDITION,
    RELEASES_READY_CONDITION,
    ROLLOUT_COMPLETED_CONDITION,
)


class ChartDeploymentReconciler:
    """Reconciles one ChartDeployment per call."""

    def __init__(self, store: ResourceStore):
        self.store = store
        self.registry = ReleaseRegistry(store)
        self.rollout = RolloutStateMachine(self.registry.reconcile_for_cluster)

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """
        Run one reconcile pass.

        Args:
            key: Namespace and name of the ChartDeployment

        Returns:
            Whether another pass is needed

        Raises:
            ChartFleetError: The first error of the pass, after a best-effort
                status patch
        """
        safe_key = sanitize_object_key(key)
        try:
            deployment = await self.store.get(ChartDeployment, key)
        except NotFoundError:
            logger.debug(f"ChartDeployment {safe_key} not found, skipping reconciliation")
            return DONE

        started = time.monotonic()
        helper = PatchHelper(self.store, deployment)
        try:
            result = await self._reconcile(deployment, helper)
        except ChartFleetError as e:
            logger.warning(f"Reconcile of {safe_key} failed: {e}")
            try:
                await self._patch(helper, deployment)
            except ChartFleetError as patch_error:
                logger.error(f"Failed to patch ChartDeployment {safe_key}: {patch_error}")
            raise

        await self._patch(helper, deployment)
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.debug(
            f"Reconciled {safe_key} in {duration_ms}ms (requeue={result.wants_requeue})"
        )
        return result

    async def _reconcile(self, deployment: ChartDeployment, helper: PatchHelper) -> ReconcileResult:
        try:
            clusters = await select_clusters(
                self.store, deployment.spec.cluster_selector, deployment.metadata.namespace
            )
        except (SelectorParseError, StoreIOError) as e:
            conditions.mark_false(
                deployment,
                SPECS_UP_TO_DATE_CONDITION,
                CLUSTER_SELECTION_FAILED_REASON,
                SEVERITY_ERROR,
                "%s",
                str(e),
            )
            raise
        deployment.set_matching_clusters(clusters)

        releases = await self.registry.list_owned(deployment)

        if deployment.is_deleting:
            if contains_finalizer(deployment, CHART_DEPLOYMENT_FINALIZER):
                result = await reconcile_delete(self.registry, deployment, releases)
                if result.wants_requeue:
                    return result

                remove_finalizer(deployment, CHART_DEPLOYMENT_FINALIZER)
                await self._patch(helper, deployment)
                key = deployment.namespaced_name
                log_rollout_operation("finalizer_removed", key)
                audit_rollout_action("finalizer_removed", key, success=True)
            return DONE

        if add_finalizer(deployment, CHART_DEPLOYMENT_FINALIZER):
            await self._patch(helper, deployment)

        if not deployment.install_once:
            await delete_orphaned_releases(self.registry, deployment, clusters, releases)

        result = await self.rollout.reconcile(deployment, clusters, releases)
        conditions.mark_true(deployment, SPECS_UP_TO_DATE_CONDITION)

        await aggregate_release_readiness(self.registry, deployment)
        return result

    async def _patch(self, helper: PatchHelper, deployment: ChartDeployment) -> None:
        conditions.set_summary(deployment, SUMMARY_CONDITIONS)
        deployment.status.observed_generation = deployment.metadata.generation
        await helper.patch(deployment)
