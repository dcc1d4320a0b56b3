"""
Per-cluster release registry.

Lists, creates, updates and deletes the ClusterReleases a ChartDeployment
owns. A release is identified by two labels (owning deployment, target
cluster) and carries a controller owner reference back to its deployment.
"""

import hashlib
import logging
import re
from typing import Dict, List, Optional

from chartfleet.audit import audit_rollout_action
from chartfleet.errors import NotFoundError
from chartfleet.logging_config import log_rollout_operation
from chartfleet.models.chart_deployment import (
    CHART_DEPLOYMENT_LABEL,
    CLUSTER_NAME_LABEL,
    ChartDeployment,
    ClusterReference,
)
from chartfleet.models.cluster import Cluster
from chartfleet.models.cluster_release import ClusterRelease, ClusterReleaseSpec
from chartfleet.models.meta import ObjectMeta, OwnerReference
from chartfleet.store.base import ResourceStore
from chartfleet.values import render_values

logger = logging.getLogger(__name__)

CHARTFLEET_API_VERSION = "chartfleet.io/v1alpha1"

# DNS-1123 label limit, so release names are also valid label values
MAX_RELEASE_NAME_LENGTH = 63
_HASH_LENGTH = 8
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")


def release_object_name(deployment_name: str, cluster_name: str) -> str:
    """
    Deterministic ClusterRelease name for a (deployment, cluster) pair.

    Names longer than the DNS label limit are truncated and suffixed with a
    hash of the full name so distinct pairs stay distinct.
    """
    full = f"{deployment_name}-{cluster_name}"
    name = _INVALID_NAME_CHARS.sub("-", full.lower()).strip("-")
    if len(name) <= MAX_RELEASE_NAME_LENGTH and name == full:
        return name

    digest = hashlib.sha256(full.encode()).hexdigest()[:_HASH_LENGTH]
    prefix = name[: MAX_RELEASE_NAME_LENGTH - _HASH_LENGTH - 1].rstrip("-")
    return f"{prefix}-{digest}"


def release_labels(deployment: ChartDeployment, cluster: Cluster) -> Dict[str, str]:
    return {
        CHART_DEPLOYMENT_LABEL: deployment.metadata.name,
        CLUSTER_NAME_LABEL: cluster.metadata.name,
    }


def controller_reference(deployment: ChartDeployment) -> OwnerReference:
    return OwnerReference(
        api_version=deployment.api_version or CHARTFLEET_API_VERSION,
        kind=ChartDeployment.KIND,
        name=deployment.metadata.name,
        uid=deployment.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def desired_release_spec(deployment: ChartDeployment, cluster: Cluster) -> ClusterReleaseSpec:
    """
    Build the release spec the deployment wants on one cluster.

    Raises:
        ValuesRenderError: If the values template fails for this cluster
    """
    spec = deployment.spec
    return ClusterReleaseSpec(
        cluster_ref=ClusterReference.for_cluster(cluster),
        repo_url=spec.repo_url,
        chart_name=spec.chart_name,
        version=spec.version,
        release_name=spec.release_name,
        release_namespace=spec.release_namespace,
        values=render_values(deployment, cluster),
        options=dict(spec.options),
    )


class ReleaseRegistry:
    """Store operations on the releases owned by ChartDeployments."""

    def __init__(self, store: ResourceStore):
        self.store = store

    async def list_owned(self, deployment: ChartDeployment) -> List[ClusterRelease]:
        """List every release labelled as owned by the deployment."""
        return await self.store.list(
            ClusterRelease,
            namespace=deployment.metadata.namespace,
            labels=deployment.owned_labels(),
        )

    async def find_for_cluster(
        self, deployment: ChartDeployment, cluster: Cluster
    ) -> Optional[ClusterRelease]:
        """Find the deployment's release targeting a cluster, if any."""
        releases = await self.store.list(
            ClusterRelease,
            namespace=deployment.metadata.namespace,
            labels=release_labels(deployment, cluster),
        )
        matching = [r for r in releases if r.cluster_key == cluster.namespaced_name]
        if len(matching) > 1:
            logger.warning(
                f"Found {len(matching)} releases of {deployment.namespaced_name} for cluster "
                f"{cluster.namespaced_name}, using {matching[0].metadata.name}"
            )
        return matching[0] if matching else None

    async def reconcile_for_cluster(self, deployment: ChartDeployment, cluster: Cluster) -> None:
        """
        Create or refresh the deployment's release on one cluster.

        A release whose chart, repository or target namespace changed cannot
        be upgraded in place; it is deleted here and recreated on a later
        pass. InstallOnce deployments never update an existing release.

        Args:
            deployment: Owning deployment
            cluster: Target cluster

        Raises:
            ValuesRenderError: If the values template fails for this cluster
            StoreIOError: If a store call fails
        """
        desired = desired_release_spec(deployment, cluster)
        existing = await self.find_for_cluster(deployment, cluster)

        if existing is None:
            await self.create_release(deployment, cluster, desired)
            return

        if existing.is_deleting:
            logger.debug(f"Release {existing.namespaced_name} is being deleted, waiting")
            return

        changed = existing.immutable_fields_changed(desired)
        if changed:
            logger.info(
                f"Immutable fields {changed} changed for release {existing.namespaced_name}, "
                "deleting it for reinstall"
            )
            await self.delete_release(deployment, existing)
            return

        if deployment.install_once:
            return

        reference = controller_reference(deployment)
        labels_current = all(
            existing.metadata.labels.get(k) == v
            for k, v in release_labels(deployment, cluster).items()
        )
        if existing.spec == desired and labels_current and self._owned_by(existing, reference):
            return

        existing.spec = desired
        existing.metadata.labels.update(release_labels(deployment, cluster))
        self._set_controller_reference(existing, reference)
        updated = await self.store.update(existing)

        key = deployment.namespaced_name
        details = {"release": updated.metadata.name, "generation": updated.metadata.generation}
        log_rollout_operation("release_updated", key, details)
        audit_rollout_action(
            "release_updated", key, details, cluster=cluster.namespaced_name, success=True
        )

    async def create_release(
        self, deployment: ChartDeployment, cluster: Cluster, spec: ClusterReleaseSpec
    ) -> ClusterRelease:
        release = ClusterRelease(
            metadata=ObjectMeta(
                name=release_object_name(deployment.metadata.name, cluster.metadata.name),
                namespace=deployment.metadata.namespace,
                labels=release_labels(deployment, cluster),
                owner_references=[controller_reference(deployment)],
            ),
            spec=spec,
        )
        created = await self.store.create(release)

        key = deployment.namespaced_name
        details = {"release": created.metadata.name, "version": spec.version}
        log_rollout_operation("release_created", key, details)
        audit_rollout_action(
            "release_created", key, details, cluster=cluster.namespaced_name, success=True
        )
        return created

    async def delete_release(self, deployment: ChartDeployment, release: ClusterRelease) -> bool:
        """
        Request deletion of a release.

        Returns:
            False when the release was already gone
        """
        try:
            await self.store.delete(release)
        except NotFoundError:
            logger.debug(f"Release {release.namespaced_name} already deleted")
            return False

        key = deployment.namespaced_name
        details = {"release": release.metadata.name}
        log_rollout_operation("release_deleted", key, details)
        audit_rollout_action(
            "release_deleted", key, details, cluster=release.cluster_key, success=True
        )
        return True

    @staticmethod
    def _owned_by(release: ClusterRelease, reference: OwnerReference) -> bool:
        return any(
            ref.controller and ref.kind == reference.kind and ref.name == reference.name
            for ref in release.metadata.owner_references
        )

    @staticmethod
    def _set_controller_reference(release: ClusterRelease, reference: OwnerReference) -> None:
        others = [
            ref
            for ref in release.metadata.owner_references
            if not (ref.kind == reference.kind and ref.name == reference.name)
        ]
        release.metadata.owner_references = others + [reference]
