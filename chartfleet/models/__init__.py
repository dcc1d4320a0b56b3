"""
Pydantic models for ChartFleet resources.

These models are the wire format for the resource store and the in-memory
representation used by the reconciler.
"""

from chartfleet.models.meta import (
    KubeModel,
    KubeObject,
    ObjectKey,
    ObjectMeta,
    OwnerReference,
    add_finalizer,
    contains_finalizer,
    namespaced_name,
    remove_finalizer,
)
from chartfleet.models.condition import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    SEVERITY_ERROR,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    Condition,
)
from chartfleet.models.selector import LabelSelector, LabelSelectorRequirement
from chartfleet.models.cluster import Cluster
from chartfleet.models.chart_deployment import (
    CHART_DEPLOYMENT_FINALIZER,
    CHART_DEPLOYMENT_LABEL,
    CLUSTER_NAME_LABEL,
    ChartDeployment,
    ChartDeploymentSpec,
    ChartDeploymentStatus,
    ClusterReference,
    RolloutOptions,
    RolloutPolicy,
    RolloutState,
)
from chartfleet.models.cluster_release import (
    ClusterRelease,
    ClusterReleaseSpec,
    ClusterReleaseStatus,
)

__all__ = [
    # Metadata
    "KubeModel",
    "KubeObject",
    "ObjectKey",
    "ObjectMeta",
    "OwnerReference",
    "add_finalizer",
    "contains_finalizer",
    "namespaced_name",
    "remove_finalizer",
    # Conditions
    "CONDITION_FALSE",
    "CONDITION_TRUE",
    "CONDITION_UNKNOWN",
    "SEVERITY_ERROR",
    "SEVERITY_INFO",
    "SEVERITY_WARNING",
    "Condition",
    # Selection
    "LabelSelector",
    "LabelSelectorRequirement",
    # Resources
    "Cluster",
    "CHART_DEPLOYMENT_FINALIZER",
    "CHART_DEPLOYMENT_LABEL",
    "CLUSTER_NAME_LABEL",
    "ChartDeployment",
    "ChartDeploymentSpec",
    "ChartDeploymentStatus",
    "ClusterReference",
    "RolloutOptions",
    "RolloutPolicy",
    "RolloutState",
    "ClusterRelease",
    "ClusterReleaseSpec",
    "ClusterReleaseStatus",
]
