"""
Staged rollout planning and gating.
"""

from chartfleet.rollout.planner import (
    RolloutCandidate,
    build_rollout_candidates,
    compute_next_step_size,
    resolve_step,
)
from chartfleet.rollout.state_machine import (
    RolloutPhase,
    RolloutStateMachine,
    determine_rollout_phase,
    select_rollout_options,
)

__all__ = [
    "RolloutCandidate",
    "RolloutPhase",
    "RolloutStateMachine",
    "build_rollout_candidates",
    "compute_next_step_size",
    "determine_rollout_phase",
    "resolve_step",
    "select_rollout_options",
]
