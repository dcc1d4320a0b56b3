"""
Outcome of a reconcile pass.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ReconcileResult:
    """
    What the work queue should do after a successful pass.

    requeue asks for another pass after the controller's default delay;
    requeue_after asks for one after the given number of seconds.
    """

    requeue: bool = False
    requeue_after: Optional[float] = None

    @property
    def wants_requeue(self) -> bool:
        return self.requeue or self.requeue_after is not None


DONE = ReconcileResult()
REQUEUE = ReconcileResult(requeue=True)
