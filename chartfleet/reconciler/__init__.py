"""
ChartDeployment reconciliation.
"""

from chartfleet.reconciler.chart_deployment import ChartDeploymentReconciler
from chartfleet.reconciler.deletion import delete_orphaned_releases, reconcile_delete
from chartfleet.reconciler.readiness import aggregate_release_readiness
from chartfleet.reconciler.releases import ReleaseRegistry, release_object_name
from chartfleet.result import ReconcileResult

__all__ = [
    "ChartDeploymentReconciler",
    "ReconcileResult",
    "ReleaseRegistry",
    "aggregate_release_readiness",
    "delete_orphaned_releases",
    "reconcile_delete",
    "release_object_name",
]
