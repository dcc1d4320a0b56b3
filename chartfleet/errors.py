"""
Error taxonomy for ChartFleet.

Every error raised during a reconcile pass derives from ChartFleetError.
None of them are permanent: the work queue retries the pass with backoff,
and status conditions make the failure visible in the meantime.
"""

from typing import Optional


class ChartFleetError(Exception):
    """Base class for all errors raised by the reconciler."""


class SelectorParseError(ChartFleetError):
    """Raised when a cluster label selector is malformed."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class ScalingComputationError(ChartFleetError):
    """Raised when a rollout step value is neither an int nor a percentage."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"invalid rollout step value {value!r}: expected an int or a percentage")


class ValuesRenderError(ChartFleetError):
    """Raised when a values template cannot be rendered for a cluster."""

    def __init__(self, cluster: str, reason: str):
        self.cluster = cluster
        self.reason = reason
        super().__init__(f"failed to render values for cluster {cluster}: {reason}")


class StoreIOError(ChartFleetError):
    """Raised when a remote store call (list/get/create/update/delete) fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class NotFoundError(StoreIOError):
    """Raised when the requested object does not exist in the store."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} not found", status=404)


class AlreadyExistsError(StoreIOError):
    """Raised when creating an object whose key is already taken."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} already exists", status=409)


class ConflictError(StoreIOError):
    """Raised when an optimistic-concurrency write loses against another writer."""

    def __init__(self, kind: str, key: str, detail: str = "object has been modified"):
        self.kind = kind
        self.key = key
        super().__init__(f"conflict writing {kind} {key}: {detail}", status=409)


def is_not_found(error: BaseException) -> bool:
    """Check whether an error means the object is gone."""
    return isinstance(error, NotFoundError)
