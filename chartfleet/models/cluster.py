"""
Cluster model.

Clusters are owned by the provisioning system; ChartFleet only reads them.
"""

from typing import Any, ClassVar, Dict

from pydantic import Field

from chartfleet.models.meta import KubeObject


class Cluster(KubeObject):
    """A workload cluster that can receive releases."""

    KIND: ClassVar[str] = "Cluster"
    PLURAL: ClassVar[str] = "clusters"

    spec: Dict[str, Any] = Field(default_factory=dict, description="Opaque cluster spec")
    status: Dict[str, Any] = Field(default_factory=dict, description="Opaque cluster status")
