"""
Watch-event to reconcile-request mapping.

A Cluster change can alter which deployments select it; a ClusterRelease
change can alter its owner's readiness. Both map to ChartDeployment keys.
"""

import logging
from typing import List

from chartfleet.errors import StoreIOError
from chartfleet.models.chart_deployment import ChartDeployment
from chartfleet.models.cluster import Cluster
from chartfleet.models.cluster_release import ClusterRelease
from chartfleet.models.meta import ObjectKey
from chartfleet.selectors import deployments_selecting
from chartfleet.store.base import ResourceStore

logger = logging.getLogger(__name__)


async def cluster_to_deployments(store: ResourceStore, cluster: Cluster) -> List[ObjectKey]:
    """
    Map a Cluster to the ChartDeployments in its namespace that select it.

    Listing failures are logged and map to nothing; the periodic resync
    covers the missed event.
    """
    try:
        deployments = await store.list(ChartDeployment, namespace=cluster.metadata.namespace)
    except StoreIOError as e:
        logger.warning(
            f"Failed to list ChartDeployments for cluster {cluster.namespaced_name}: {e}"
        )
        return []

    return [d.key for d in deployments_selecting(cluster, deployments)]


def release_to_deployment(release: ClusterRelease) -> List[ObjectKey]:
    """Map a ClusterRelease to its owner via the controller owner reference."""
    for ref in release.metadata.owner_references:
        if ref.controller and ref.kind == ChartDeployment.KIND:
            return [ObjectKey(namespace=release.metadata.namespace, name=ref.name)]
    return []
