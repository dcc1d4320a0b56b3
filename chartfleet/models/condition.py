"""
Tri-state status conditions.
"""

from typing import Literal, Optional

from pydantic import Field

from chartfleet.models.meta import KubeModel

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

SEVERITY_ERROR = "Error"
SEVERITY_WARNING = "Warning"
SEVERITY_INFO = "Info"

ConditionStatus = Literal["True", "False", "Unknown"]
ConditionSeverity = Literal["Error", "Warning", "Info"]


class Condition(KubeModel):
    """Observed state of one aspect of an object."""

    type: str = Field(..., description="Condition type, e.g. Ready")
    status: ConditionStatus = Field(..., description="True, False or Unknown")
    severity: Optional[ConditionSeverity] = Field(
        None, description="Only meaningful when status is False"
    )
    reason: Optional[str] = Field(None, description="CamelCase machine-readable reason")
    message: Optional[str] = Field(None, description="Human-readable details")
    last_transition_time: Optional[str] = Field(
        None, description="When the status last changed"
    )

    def same_state(self, other: "Condition") -> bool:
        """Compare everything except the transition time."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.severity == other.severity
            and self.reason == other.reason
            and self.message == other.message
        )
