"""
ChartDeployment: the user-facing desired state of a chart rolled out across
a selected set of clusters.
"""

from typing import Any, ClassVar, Dict, List, Literal, Optional, Sequence, Union

from pydantic import Field

from chartfleet.models.cluster import Cluster
from chartfleet.models.condition import Condition
from chartfleet.models.meta import KubeModel, KubeObject
from chartfleet.models.selector import LabelSelector

# Labels linking a ClusterRelease to its ChartDeployment and target cluster
CHART_DEPLOYMENT_LABEL = "chartfleet.io/chart-deployment-name"
CLUSTER_NAME_LABEL = "chartfleet.io/cluster-name"

CHART_DEPLOYMENT_FINALIZER = "chartfleet.io/chart-deployment"

# Condition types
READY_CONDITION = "Ready"
SPECS_UP_TO_DATE_CONDITION = "ClusterReleaseSpecsUpToDate"
RELEASES_READY_CONDITION = "ClusterReleasesReady"
ROLLOUT_COMPLETED_CONDITION = "ClusterReleasesRolloutCompleted"

OWNED_CONDITIONS = (
    READY_CONDITION,
    SPECS_UP_TO_DATE_CONDITION,
    RELEASES_READY_CONDITION,
    ROLLOUT_COMPLETED_CONDITION,
)

# Condition reasons
CLUSTER_SELECTION_FAILED_REASON = "ClusterSelectionFailed"
SPECS_UPDATING_REASON = "ClusterReleaseSpecsUpdating"
ROLLOUT_NOT_USED_REASON = "RolloutNotUsed"
ROLLOUT_NOT_COMPLETE_REASON = "RolloutNotComplete"
ROLLOUT_NOT_USED_MESSAGE = "ChartDeployment does not use rollout"

RECONCILE_STRATEGY_NORMAL = "Normal"
RECONCILE_STRATEGY_INSTALL_ONCE = "InstallOnce"

# An absolute cluster count or a percentage string such as "20%"
IntOrPercent = Union[int, str]


class RolloutOptions(KubeModel):
    """Batch sizing for one rollout phase."""

    step_init: Optional[IntOrPercent] = Field(
        None, description="Size of the first batch, e.g. 2 or '20%'"
    )
    step_increment: Optional[IntOrPercent] = Field(
        None, description="Clusters added to the step size after each ready batch"
    )
    step_limit: Optional[IntOrPercent] = Field(
        None,
        description=(
            "Maximum step size (only applied when greater than step_init). A limit below "
            "the number of selected clusters holds the rollout at the limit: it never "
            "completes and the remaining clusters get no release"
        ),
    )


class RolloutPolicy(KubeModel):
    """Per-phase rollout configuration."""

    install: Optional[RolloutOptions] = Field(
        None, description="Batching used while the deployment is first installed"
    )
    upgrade: Optional[RolloutOptions] = Field(
        None, description="Batching used after the deployment spec changes"
    )


class ClusterReference(KubeModel):
    """Reference to a Cluster by namespace and name."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def for_cluster(cls, cluster: Cluster) -> "ClusterReference":
        return cls(namespace=cluster.metadata.namespace, name=cluster.metadata.name)


class ChartDeploymentSpec(KubeModel):
    """Desired state of a ChartDeployment."""

    cluster_selector: LabelSelector = Field(
        default_factory=LabelSelector, description="Selects the target clusters"
    )
    repo_url: str = Field(..., description="Chart repository URL")
    chart_name: str = Field(..., description="Chart name within the repository")
    version: Optional[str] = Field(None, description="Chart version, latest if unset")
    release_name: Optional[str] = Field(
        None, description="Release name on the target clusters, generated if unset"
    )
    release_namespace: str = Field("default", description="Namespace installed into")
    values_template: str = Field(
        "", description="Jinja2 template rendered per cluster into YAML values"
    )
    reconcile_strategy: Literal["Normal", "InstallOnce"] = Field(
        RECONCILE_STRATEGY_NORMAL,
        description="Normal keeps releases in sync; InstallOnce installs and leaves them",
    )
    rollout: Optional[RolloutPolicy] = Field(
        None, description="Staged rollout policy, all clusters at once if unset"
    )
    options: Dict[str, Any] = Field(
        default_factory=dict, description="Installer options passed through unchanged"
    )


class RolloutState(KubeModel):
    """Persisted rollout progress."""

    count: int = Field(0, description="Clusters given a release in this rollout episode")
    step_size: int = Field(0, description="Current batch step size")


class ChartDeploymentStatus(KubeModel):
    """Observed state of a ChartDeployment."""

    conditions: List[Condition] = Field(default_factory=list)
    rollout: Optional[RolloutState] = Field(None)
    matching_clusters: List[ClusterReference] = Field(default_factory=list)
    observed_generation: Optional[int] = Field(None)


class ChartDeployment(KubeObject):
    """A chart deployed across the clusters matching a selector."""

    KIND: ClassVar[str] = "ChartDeployment"
    PLURAL: ClassVar[str] = "chartdeployments"

    spec: ChartDeploymentSpec
    status: ChartDeploymentStatus = Field(default_factory=ChartDeploymentStatus)

    @property
    def install_once(self) -> bool:
        return self.spec.reconcile_strategy == RECONCILE_STRATEGY_INSTALL_ONCE

    def owned_labels(self) -> Dict[str, str]:
        """Labels identifying releases owned by this deployment."""
        return {CHART_DEPLOYMENT_LABEL: self.metadata.name}

    def set_matching_clusters(self, clusters: Sequence[Cluster]) -> None:
        self.status.matching_clusters = [ClusterReference.for_cluster(c) for c in clusters]
