"""
Orphan removal and finalizer-gated teardown.
"""

import logging
from typing import List, Sequence

from chartfleet import conditions
from chartfleet.errors import NotFoundError
from chartfleet.models.chart_deployment import RELEASES_READY_CONDITION, ChartDeployment
from chartfleet.models.cluster import Cluster
from chartfleet.models.cluster_release import ClusterRelease
from chartfleet.reconciler.releases import ReleaseRegistry
from chartfleet.result import DONE, REQUEUE, ReconcileResult

logger = logging.getLogger(__name__)


async def delete_orphaned_releases(
    registry: ReleaseRegistry,
    deployment: ChartDeployment,
    clusters: Sequence[Cluster],
    releases: Sequence[ClusterRelease],
) -> List[ClusterRelease]:
    """
    Delete releases whose target cluster is no longer selected.

    Runs regardless of rollout progress.

    Returns:
        The releases deletion was requested for
    """
    selected = {cluster.namespaced_name for cluster in clusters}
    orphans = [r for r in releases if r.cluster_key not in selected]

    for release in orphans:
        logger.info(
            f"Cluster {release.cluster_key} no longer selected by "
            f"{deployment.namespaced_name}, deleting release {release.metadata.name}"
        )
        await registry.delete_release(deployment, release)
    return orphans


async def reconcile_delete(
    registry: ReleaseRegistry,
    deployment: ChartDeployment,
    releases: Sequence[ClusterRelease],
) -> ReconcileResult:
    """
    Tear down every release of a deployment that is being deleted.

    Each release is deleted and then fetched again; NotFound confirms it is
    gone. While any release remains, ClusterReleasesReady is aggregated over
    the remaining ones and the pass asks to be requeued.

    Args:
        registry: Release registry
        deployment: Deployment being deleted, status mutated in place
        releases: Releases owned by the deployment

    Returns:
        DONE once every release is gone, REQUEUE otherwise
    """
    pending: List[ClusterRelease] = []
    for release in releases:
        await registry.delete_release(deployment, release)
        try:
            current = await registry.store.get(ClusterRelease, release.key)
        except NotFoundError:
            continue
        logger.debug(f"Release {release.namespaced_name} not removed yet")
        pending.append(current)

    if pending:
        conditions.set_aggregate(deployment, RELEASES_READY_CONDITION, pending)
        logger.info(
            f"Waiting on {len(pending)} releases before finalizing {deployment.namespaced_name}"
        )
        return REQUEUE
    return DONE
