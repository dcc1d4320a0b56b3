"""
Readiness aggregation over a deployment's releases.
"""

import logging

from chartfleet import conditions
from chartfleet.models.chart_deployment import (
    RELEASES_READY_CONDITION,
    SPECS_UPDATING_REASON,
    ChartDeployment,
)
from chartfleet.models.condition import SEVERITY_INFO
from chartfleet.reconciler.releases import ReleaseRegistry

logger = logging.getLogger(__name__)


async def aggregate_release_readiness(
    registry: ReleaseRegistry, deployment: ChartDeployment
) -> None:
    """
    Set ClusterReleasesReady from the releases the deployment owns now.

    With no releases the condition is True. While any release has not
    observed its latest generation the condition is False with reason
    ClusterReleaseSpecsUpdating, since its Ready condition describes an older
    spec.
    """
    releases = await registry.list_owned(deployment)
    if not releases:
        conditions.mark_true(deployment, RELEASES_READY_CONDITION)
        return

    for release in releases:
        if not release.generation_observed:
            conditions.mark_false(
                deployment,
                RELEASES_READY_CONDITION,
                SPECS_UPDATING_REASON,
                SEVERITY_INFO,
                "Cluster release '%s' is not updated yet",
                release.metadata.name,
            )
            return

    conditions.set_aggregate(deployment, RELEASES_READY_CONDITION, releases)
    logger.debug(
        f"Aggregated readiness of {len(releases)} releases for {deployment.namespaced_name}"
    )
