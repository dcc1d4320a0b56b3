"""
Condition primitives.

Helpers for reading and writing tri-state conditions on any object whose
status carries a ``conditions`` list, plus the two folding operations the
reconciler relies on:

- set_aggregate: fold the Ready condition of many child objects into one
  condition on the parent
- set_summary: fold several of the parent's own conditions into its Ready
"""

from typing import Any, List, Optional, Sequence, Tuple

from chartfleet.models.condition import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    SEVERITY_ERROR,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    Condition,
)
from chartfleet.models.chart_deployment import READY_CONDITION
from chartfleet.models.meta import utc_now

_SEVERITY_RANK = {SEVERITY_ERROR: 3, SEVERITY_WARNING: 2, SEVERITY_INFO: 1, None: 0}

# Source names listed in aggregate messages before eliding the rest
_MAX_NAMES_IN_MESSAGE = 3


def _conditions(obj: Any) -> List[Condition]:
    return obj.status.conditions


def get(obj: Any, condition_type: str) -> Optional[Condition]:
    """Return the condition of the given type, or None."""
    for condition in _conditions(obj):
        if condition.type == condition_type:
            return condition
    return None


def set_condition(obj: Any, condition: Condition) -> None:
    """
    Add or replace a condition.

    The transition time is kept when the status did not change. Conditions are
    kept sorted with Ready first, then alphabetically by type.
    """
    existing = get(obj, condition.type)
    if existing is not None and existing.status == condition.status:
        condition.last_transition_time = existing.last_transition_time
    elif condition.last_transition_time is None:
        condition.last_transition_time = utc_now()

    others = [c for c in _conditions(obj) if c.type != condition.type]
    others.append(condition)
    others.sort(key=lambda c: (c.type != READY_CONDITION, c.type))
    obj.status.conditions = others


def delete(obj: Any, condition_type: str) -> None:
    obj.status.conditions = [c for c in _conditions(obj) if c.type != condition_type]


def mark_true(
    obj: Any, condition_type: str, reason: Optional[str] = None, message: Optional[str] = None
) -> None:
    """Set a condition to True."""
    set_condition(
        obj, Condition(type=condition_type, status=CONDITION_TRUE, reason=reason, message=message)
    )


def mark_false(
    obj: Any,
    condition_type: str,
    reason: str,
    severity: str,
    message_format: str = "",
    *args: Any,
) -> None:
    """Set a condition to False with a reason, severity and formatted message."""
    message = message_format % args if args else message_format
    set_condition(
        obj,
        Condition(
            type=condition_type,
            status=CONDITION_FALSE,
            reason=reason,
            severity=severity,
            message=message or None,
        ),
    )


def mark_unknown(
    obj: Any, condition_type: str, reason: str, message_format: str = "", *args: Any
) -> None:
    """Set a condition to Unknown."""
    message = message_format % args if args else message_format
    set_condition(
        obj,
        Condition(
            type=condition_type, status=CONDITION_UNKNOWN, reason=reason, message=message or None
        ),
    )


def is_true(obj: Any, condition_type: str) -> bool:
    condition = get(obj, condition_type)
    return condition is not None and condition.status == CONDITION_TRUE


def is_false(obj: Any, condition_type: str) -> bool:
    condition = get(obj, condition_type)
    return condition is not None and condition.status == CONDITION_FALSE


def is_unknown(obj: Any, condition_type: str) -> bool:
    """Missing conditions count as Unknown."""
    condition = get(obj, condition_type)
    return condition is None or condition.status == CONDITION_UNKNOWN


def _worst(conditions: Sequence[Condition]) -> Condition:
    return max(conditions, key=lambda c: _SEVERITY_RANK.get(c.severity, 0))


def _name_list(names: Sequence[str]) -> str:
    shown = ", ".join(names[:_MAX_NAMES_IN_MESSAGE])
    if len(names) > _MAX_NAMES_IN_MESSAGE:
        shown += f" and {len(names) - _MAX_NAMES_IN_MESSAGE} more"
    return shown


def _merge(
    condition_type: str, entries: Sequence[Tuple[str, Condition]], what: str
) -> Condition:
    """Fold (source name, condition) pairs into one condition."""
    false_entries = [(n, c) for n, c in entries if c.status == CONDITION_FALSE]
    unknown_entries = [(n, c) for n, c in entries if c.status == CONDITION_UNKNOWN]

    if false_entries:
        worst = _worst([c for _, c in false_entries])
        names = [n for n, _ in false_entries]
        if len(false_entries) == 1:
            message = f"{names[0]}: {worst.message}" if worst.message else names[0]
        else:
            message = (
                f"{len(false_entries)} of {len(entries)} {what} not ready: {_name_list(names)}"
            )
        return Condition(
            type=condition_type,
            status=CONDITION_FALSE,
            reason=worst.reason,
            severity=worst.severity or SEVERITY_INFO,
            message=message,
        )

    if unknown_entries:
        names = [n for n, _ in unknown_entries]
        first = unknown_entries[0][1]
        return Condition(
            type=condition_type,
            status=CONDITION_UNKNOWN,
            reason=first.reason,
            message=f"{len(unknown_entries)} of {len(entries)} {what} unknown: {_name_list(names)}",
        )

    return Condition(type=condition_type, status=CONDITION_TRUE)


def set_aggregate(
    target: Any,
    condition_type: str,
    sources: Sequence[Any],
    source_condition: str = READY_CONDITION,
) -> None:
    """
    Set a condition on target from the source_condition of every source.

    True only when every source reports True. A source without the condition
    counts as Unknown. With no sources the condition is True.

    Args:
        target: Object receiving the aggregate condition
        condition_type: Condition type to set on target
        sources: Child objects to fold
        source_condition: Condition type read from each child
    """
    entries = []
    for source in sources:
        condition = get(source, source_condition) or Condition(
            type=source_condition, status=CONDITION_UNKNOWN
        )
        entries.append((source.metadata.name, condition))
    kind = getattr(sources[0], "KIND", "object") if sources else "object"
    set_condition(target, _merge(condition_type, entries, f"{kind}s"))


def set_summary(target: Any, condition_types: Sequence[str]) -> None:
    """
    Set target's Ready condition from a subset of its own conditions.

    Condition types not present on target are skipped.
    """
    entries = []
    for condition_type in condition_types:
        condition = get(target, condition_type)
        if condition is not None:
            entries.append((condition_type, condition))
    if not entries:
        return
    set_condition(target, _merge(READY_CONDITION, entries, "conditions"))
