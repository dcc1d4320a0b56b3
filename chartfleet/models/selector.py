"""
Label selectors for choosing clusters.

Mirrors the Kubernetes LabelSelector: matchLabels plus matchExpressions with
In, NotIn, Exists and DoesNotExist. An empty selector matches everything.
"""

import re
from typing import Dict, List, Mapping

from pydantic import Field

from chartfleet.errors import SelectorParseError
from chartfleet.models.meta import KubeModel

OPERATOR_IN = "In"
OPERATOR_NOT_IN = "NotIn"
OPERATOR_EXISTS = "Exists"
OPERATOR_DOES_NOT_EXIST = "DoesNotExist"

_NAME_RE = re.compile(r"^([A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?)$")
_PREFIX_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_VALUE_RE = re.compile(r"^(([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?$")


def validate_label_key(key: str) -> None:
    """Validate a qualified label key ("prefix/name" or "name")."""
    prefix, sep, name = key.rpartition("/")
    if sep:
        if not prefix or len(prefix) > 253 or not _PREFIX_RE.match(prefix):
            raise SelectorParseError(f"invalid label key prefix in {key!r}", key=key)
    if not name or len(name) > 63 or not _NAME_RE.match(name):
        raise SelectorParseError(f"invalid label key {key!r}", key=key)


def validate_label_value(key: str, value: str) -> None:
    """Validate a label value."""
    if len(value) > 63 or not _VALUE_RE.match(value):
        raise SelectorParseError(f"invalid label value {value!r} for key {key!r}", key=key)


class LabelSelectorRequirement(KubeModel):
    """A single set-based requirement."""

    key: str = Field(..., description="Label key the requirement applies to")
    operator: str = Field(..., description="In, NotIn, Exists or DoesNotExist")
    values: List[str] = Field(default_factory=list)

    def validate_requirement(self) -> None:
        validate_label_key(self.key)
        if self.operator in (OPERATOR_IN, OPERATOR_NOT_IN):
            if not self.values:
                raise SelectorParseError(
                    f"values must be non-empty for operator {self.operator} on key {self.key!r}",
                    key=self.key,
                )
            for value in self.values:
                validate_label_value(self.key, value)
        elif self.operator in (OPERATOR_EXISTS, OPERATOR_DOES_NOT_EXIST):
            if self.values:
                raise SelectorParseError(
                    f"values must be empty for operator {self.operator} on key {self.key!r}",
                    key=self.key,
                )
        else:
            raise SelectorParseError(
                f"{self.operator!r} is not a valid selector operator", key=self.key
            )

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == OPERATOR_IN:
            return self.key in labels and labels[self.key] in self.values
        if self.operator == OPERATOR_NOT_IN:
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == OPERATOR_EXISTS:
            return self.key in labels
        return self.key not in labels

    def to_selector_string(self) -> str:
        if self.operator == OPERATOR_IN:
            return f"{self.key} in ({','.join(sorted(self.values))})"
        if self.operator == OPERATOR_NOT_IN:
            return f"{self.key} notin ({','.join(sorted(self.values))})"
        if self.operator == OPERATOR_EXISTS:
            return self.key
        return f"!{self.key}"


class LabelSelector(KubeModel):
    """Label query over a set of objects."""

    match_labels: Dict[str, str] = Field(default_factory=dict)
    match_expressions: List[LabelSelectorRequirement] = Field(default_factory=list)

    def validate_selector(self) -> None:
        """
        Check the selector is well formed.

        Raises:
            SelectorParseError: If a key, value or operator is invalid
        """
        for key, value in self.match_labels.items():
            validate_label_key(key)
            validate_label_value(key, value)
        for requirement in self.match_expressions:
            requirement.validate_requirement()

    @property
    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions

    def matches(self, labels: Mapping[str, str]) -> bool:
        """
        Check whether a label set satisfies the selector.

        Args:
            labels: Labels of the candidate object

        Returns:
            True if every requirement matches

        Raises:
            SelectorParseError: If the selector is malformed
        """
        self.validate_selector()
        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False
        return all(requirement.matches(labels) for requirement in self.match_expressions)

    def to_selector_string(self) -> str:
        """Render in the Kubernetes string form used by list calls."""
        self.validate_selector()
        parts = [f"{key}={value}" for key, value in sorted(self.match_labels.items())]
        parts.extend(requirement.to_selector_string() for requirement in self.match_expressions)
        return ",".join(parts)


def selector_from_labels(labels: Mapping[str, str]) -> LabelSelector:
    """Build an equality-only selector."""
    return LabelSelector(match_labels=dict(labels))
