"""
Owned-field patching.

The reconciler only ever writes a fixed set of fields on a ChartDeployment:
its own conditions, the rollout state, matching clusters, observed
generation and its finalizer. PatchHelper applies just those fields onto the
latest stored copy, so concurrent writers of other fields never conflict
with it.
"""

import logging
from typing import Any, Dict, Sequence, Set

from chartfleet.errors import ConflictError
from chartfleet.models.chart_deployment import (
    CHART_DEPLOYMENT_FINALIZER,
    OWNED_CONDITIONS,
    READY_CONDITION,
    ChartDeployment,
)
from chartfleet.models.meta import add_finalizer, contains_finalizer, remove_finalizer
from chartfleet.store.base import ResourceStore

logger = logging.getLogger(__name__)

_CONDITION_PREFIX = "condition:"


class PatchHelper:
    """Snapshot a deployment, then write back only the fields this controller owns."""

    def __init__(
        self,
        store: ResourceStore,
        deployment: ChartDeployment,
        owned_conditions: Sequence[str] = OWNED_CONDITIONS,
        finalizer: str = CHART_DEPLOYMENT_FINALIZER,
    ):
        """
        Args:
            store: Resource store
            deployment: Deployment as read at the start of the pass
            owned_conditions: Condition types written by this controller
            finalizer: Finalizer entry managed by this controller
        """
        self.store = store
        self.owned_conditions = tuple(owned_conditions)
        self.finalizer = finalizer
        self.before = deployment.model_copy(deep=True)

    def _owned_view(self, deployment: ChartDeployment) -> Dict[str, Any]:
        status = deployment.status
        view: Dict[str, Any] = {
            "rollout": status.rollout.model_dump() if status.rollout is not None else None,
            "matching_clusters": [str(ref) for ref in status.matching_clusters],
            "observed_generation": status.observed_generation,
            "finalizer": contains_finalizer(deployment, self.finalizer),
        }
        for condition_type in self.owned_conditions:
            view[_CONDITION_PREFIX + condition_type] = None
        for condition in status.conditions:
            if condition.type in self.owned_conditions:
                view[_CONDITION_PREFIX + condition.type] = condition.model_dump()
        return view

    def changed_fields(self, deployment: ChartDeployment) -> Set[str]:
        """Owned fields that differ from the snapshot."""
        before = self._owned_view(self.before)
        after = self._owned_view(deployment)
        return {field for field in after if after[field] != before[field]}

    async def patch(self, deployment: ChartDeployment) -> ChartDeployment:
        """
        Write the deployment's owned-field changes to the store.

        Args:
            deployment: Deployment carrying this pass's changes

        Returns:
            The stored deployment after the write (the input when nothing changed)

        Raises:
            ConflictError: If another writer changed one of the same owned
                fields, or the object changed between read and write
            NotFoundError: If the deployment no longer exists
        """
        changed = self.changed_fields(deployment)
        if not changed:
            return deployment

        current = await self.store.get(ChartDeployment, deployment.key)
        before = self._owned_view(self.before)
        after = self._owned_view(deployment)
        stored = self._owned_view(current)

        for field in sorted(changed):
            if stored[field] != before[field] and stored[field] != after[field]:
                raise ConflictError(
                    ChartDeployment.KIND,
                    str(deployment.key),
                    f"owned field {field} was changed by another writer",
                )

        self._apply(current, deployment, changed)
        updated = await self.store.update(current)
        logger.debug(f"Patched {deployment.namespaced_name}: {sorted(changed)}")

        deployment.metadata.resource_version = updated.metadata.resource_version
        self.before = deployment.model_copy(deep=True)
        return updated

    def _apply(self, current: ChartDeployment, desired: ChartDeployment, fields: Set[str]) -> None:
        if "rollout" in fields:
            current.status.rollout = (
                desired.status.rollout.model_copy(deep=True)
                if desired.status.rollout is not None
                else None
            )
        if "matching_clusters" in fields:
            current.status.matching_clusters = [
                ref.model_copy() for ref in desired.status.matching_clusters
            ]
        if "observed_generation" in fields:
            current.status.observed_generation = desired.status.observed_generation
        if "finalizer" in fields:
            if contains_finalizer(desired, self.finalizer):
                add_finalizer(current, self.finalizer)
            else:
                remove_finalizer(current, self.finalizer)

        condition_types = {
            f[len(_CONDITION_PREFIX) :] for f in fields if f.startswith(_CONDITION_PREFIX)
        }
        if condition_types:
            merged = [c for c in current.status.conditions if c.type not in condition_types]
            merged.extend(
                c.model_copy() for c in desired.status.conditions if c.type in condition_types
            )
            merged.sort(key=lambda c: (c.type != READY_CONDITION, c.type))
            current.status.conditions = merged
