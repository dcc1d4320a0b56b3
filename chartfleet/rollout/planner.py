"""
Batch planning for staged rollouts.

Candidates are ordered by their "namespace/name" identity so every pass, on
every replica, walks clusters in the same order. Step values are absolute
counts or percentages of the candidate total.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from chartfleet import conditions
from chartfleet.errors import ScalingComputationError
from chartfleet.models.chart_deployment import READY_CONDITION, IntOrPercent, RolloutOptions
from chartfleet.models.cluster import Cluster
from chartfleet.models.cluster_release import ClusterRelease

logger = logging.getLogger(__name__)

_PERCENT_RE = re.compile(r"^\s*(\d+)\s*%\s*$")


def resolve_step(value: Optional[IntOrPercent], total: int) -> int:
    """
    Resolve a step value against the number of candidate clusters.

    Percentages round up, so "20%" of 7 clusters is 2 rather than 1.

    Args:
        value: Absolute count, percentage string such as "20%", or None
        total: Number of candidate clusters

    Returns:
        Non-negative cluster count (0 for None)

    Raises:
        ScalingComputationError: If value is not an int or percentage string
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ScalingComputationError(value)
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, str):
        match = _PERCENT_RE.match(value)
        if match is None:
            raise ScalingComputationError(value)
        percent = int(match.group(1))
        # Integer ceiling avoids float rounding on exact multiples
        return -(-percent * max(total, 0) // 100)
    raise ScalingComputationError(value)


def compute_next_step_size(old_step_size: int, options: RolloutOptions, total: int) -> int:
    """
    Grow the step size by step_increment.

    The result is clamped to step_limit only when the limit is greater than
    step_init; a limit at or below step_init is not applied.
    """
    step_init = resolve_step(options.step_init, total)
    step_limit = resolve_step(options.step_limit, total)
    step_size = old_step_size + resolve_step(options.step_increment, total)

    if step_limit > step_init and step_size > step_limit:
        step_size = step_limit
    return step_size


@dataclass
class RolloutCandidate:
    """A selected cluster and the state of its release, built fresh each pass."""

    cluster: Cluster
    release: Optional[ClusterRelease] = None

    @property
    def identity(self) -> str:
        return self.cluster.namespaced_name

    @property
    def has_release(self) -> bool:
        return self.release is not None

    @property
    def release_ready(self) -> bool:
        return self.release is not None and conditions.is_true(self.release, READY_CONDITION)


def build_rollout_candidates(
    clusters: Sequence[Cluster], releases: Sequence[ClusterRelease]
) -> List[RolloutCandidate]:
    """
    Pair each selected cluster with its existing release, sorted by identity.

    Releases whose cluster is not selected are not candidates.
    """
    by_cluster: Dict[str, ClusterRelease] = {r.cluster_key: r for r in releases}
    candidates = [
        RolloutCandidate(cluster=c, release=by_cluster.get(c.namespaced_name)) for c in clusters
    ]
    candidates.sort(key=lambda c: c.identity)
    return candidates
