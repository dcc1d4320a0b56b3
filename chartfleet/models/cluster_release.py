"""
ClusterRelease: the materialization of a ChartDeployment on one cluster.

The release installer watches these objects, drives install/upgrade on the
target cluster and reports back through the Ready condition and
observed_generation.
"""

from typing import Any, ClassVar, Dict, List, Optional

from pydantic import Field

from chartfleet.models.chart_deployment import ClusterReference
from chartfleet.models.condition import Condition
from chartfleet.models.meta import KubeModel, KubeObject

# Spec fields the installer cannot change in place; a change means reinstall
IMMUTABLE_FIELDS = ("chart_name", "repo_url", "release_namespace")


class ClusterReleaseSpec(KubeModel):
    """Desired release on one target cluster."""

    cluster_ref: ClusterReference = Field(..., description="Target cluster")
    repo_url: str
    chart_name: str
    version: Optional[str] = None
    release_name: Optional[str] = None
    release_namespace: str = "default"
    values: str = Field("", description="Rendered YAML values")
    options: Dict[str, Any] = Field(default_factory=dict)


class ClusterReleaseStatus(KubeModel):
    """Installer-reported state of the release."""

    conditions: List[Condition] = Field(default_factory=list)
    observed_generation: int = Field(0)
    status: Optional[str] = Field(None, description="Installer release status, e.g. deployed")
    revision: Optional[int] = Field(None)


class ClusterRelease(KubeObject):
    """A chart release targeted at a single cluster."""

    KIND: ClassVar[str] = "ClusterRelease"
    PLURAL: ClassVar[str] = "clusterreleases"

    spec: ClusterReleaseSpec
    status: ClusterReleaseStatus = Field(default_factory=ClusterReleaseStatus)

    @property
    def cluster_key(self) -> str:
        return f"{self.spec.cluster_ref.namespace}/{self.spec.cluster_ref.name}"

    @property
    def generation_observed(self) -> bool:
        """Has the installer caught up with the latest spec?"""
        return self.status.observed_generation == self.metadata.generation

    def immutable_fields_changed(self, desired: ClusterReleaseSpec) -> List[str]:
        return [f for f in IMMUTABLE_FIELDS if getattr(self.spec, f) != getattr(desired, f)]
