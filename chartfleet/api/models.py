"""
Response models for the ChartFleet status API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from chartfleet import conditions
from chartfleet.models.chart_deployment import (
    READY_CONDITION,
    ROLLOUT_COMPLETED_CONDITION,
    ChartDeployment,
)
from chartfleet.models.condition import Condition


class StatusResponse(BaseModel):
    """Response model for manager status."""

    status: str
    version: str
    store_backend: str
    uptime_seconds: Optional[int] = None
    start_time: Optional[str] = None
    controller: Dict[str, Any] = Field(default_factory=dict)


class RolloutSummary(BaseModel):
    """Rollout progress of one deployment."""

    count: int = 0
    step_size: int = 0
    total: int = Field(0, description="Currently selected clusters")
    completed: bool = False


class DeploymentSummary(BaseModel):
    """One ChartDeployment as reported by the API."""

    namespace: str
    name: str
    chart: str
    version: Optional[str] = None
    generation: int
    observed_generation: Optional[int] = None
    ready: Optional[str] = Field(None, description="Status of the summary Ready condition")
    deleting: bool = False
    rollout: RolloutSummary
    matching_clusters: List[str] = Field(default_factory=list)

    @classmethod
    def from_deployment(cls, deployment: ChartDeployment) -> "DeploymentSummary":
        ready = conditions.get(deployment, READY_CONDITION)
        state = deployment.status.rollout
        return cls(
            namespace=deployment.metadata.namespace,
            name=deployment.metadata.name,
            chart=f"{deployment.spec.repo_url}/{deployment.spec.chart_name}",
            version=deployment.spec.version,
            generation=deployment.metadata.generation,
            observed_generation=deployment.status.observed_generation,
            ready=ready.status if ready is not None else None,
            deleting=deployment.is_deleting,
            rollout=RolloutSummary(
                count=state.count if state is not None else 0,
                step_size=state.step_size if state is not None else 0,
                total=len(deployment.status.matching_clusters),
                completed=conditions.is_true(deployment, ROLLOUT_COMPLETED_CONDITION),
            ),
            matching_clusters=[str(ref) for ref in deployment.status.matching_clusters],
        )


class DeploymentListResponse(BaseModel):
    """Response model for deployment list."""

    deployments: List[DeploymentSummary]


class ReleaseSummary(BaseModel):
    """One ClusterRelease owned by a deployment."""

    name: str
    cluster: str
    generation: int
    observed_generation: int
    ready: Optional[str] = None


class DeploymentDetailResponse(BaseModel):
    """Response model for a single deployment."""

    deployment: DeploymentSummary
    conditions: List[Condition]
    releases: List[ReleaseSummary]


class ReconcileResponse(BaseModel):
    """Response model for a reconcile request."""

    queued: bool
    key: str
