"""
Cluster selection.

Resolves a deployment's label selector to the clusters it currently matches.
Nothing is cached: every pass sees the fleet as the store reports it.
"""

import logging
from typing import List, Sequence

from chartfleet.errors import SelectorParseError
from chartfleet.models.chart_deployment import ChartDeployment
from chartfleet.models.cluster import Cluster
from chartfleet.models.selector import LabelSelector
from chartfleet.store.base import ResourceStore

logger = logging.getLogger(__name__)


async def select_clusters(
    store: ResourceStore, selector: LabelSelector, namespace: str
) -> List[Cluster]:
    """
    List the clusters in a namespace matching a selector.

    Args:
        store: Resource store
        selector: Cluster label selector, empty matches every cluster
        namespace: Namespace searched (the deployment's own)

    Returns:
        Matching clusters

    Raises:
        SelectorParseError: If the selector is malformed
        StoreIOError: If listing fails
    """
    selector.validate_selector()
    clusters = await store.list(Cluster, namespace=namespace, selector=selector)
    logger.debug(f"Selector {selector.to_selector_string()!r} matched {len(clusters)} clusters")
    return clusters


def deployments_selecting(
    cluster: Cluster, deployments: Sequence[ChartDeployment]
) -> List[ChartDeployment]:
    """
    Return the deployments in the cluster's namespace whose selector matches it.

    Deployments with a malformed selector are skipped.
    """
    matching = []
    for deployment in deployments:
        if deployment.metadata.namespace != cluster.metadata.namespace:
            continue
        try:
            if deployment.spec.cluster_selector.matches(cluster.metadata.labels):
                matching.append(deployment)
        except SelectorParseError as e:
            logger.error(f"Invalid cluster selector on {deployment.namespaced_name}: {e}")
    return matching
