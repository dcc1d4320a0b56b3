"""
Resource store contract.

The store is the system of record for ChartDeployments, ClusterReleases and
Clusters. Every call may block on network I/O; implementations translate
their native failures into the chartfleet.errors taxonomy.
"""

from typing import (
    AsyncIterator,
    Dict,
    List,
    Literal,
    Optional,
    Protocol,
    Type,
    TypeVar,
    runtime_checkable,
)

from pydantic import BaseModel, ConfigDict

from chartfleet.models.meta import KubeObject, ObjectKey
from chartfleet.models.selector import LabelSelector

T = TypeVar("T", bound=KubeObject)

EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"


class WatchEvent(BaseModel):
    """A change notification for one stored object."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: Literal["ADDED", "MODIFIED", "DELETED"]
    object: KubeObject


@runtime_checkable
class ResourceStore(Protocol):
    """Async object store with optimistic concurrency."""

    async def list(
        self,
        kind: Type[T],
        namespace: Optional[str] = None,
        selector: Optional[LabelSelector] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[T]:
        """
        List objects of a kind.

        Promises:
        - namespace None lists across all namespaces
        - selector and labels are both applied when given
        - Raises SelectorParseError for malformed selectors, StoreIOError otherwise
        """
        ...

    async def get(self, kind: Type[T], key: ObjectKey) -> T:
        """Fetch one object. Raises NotFoundError when it does not exist."""
        ...

    async def create(self, obj: T) -> T:
        """Create an object. Raises AlreadyExistsError when the key is taken."""
        ...

    async def update(self, obj: T) -> T:
        """
        Replace an object, metadata and status included.

        Promises:
        - Fails with ConflictError when obj.metadata.resource_version is stale
        - Increments metadata.generation only when spec changed
        - Removes an object being deleted once its finalizer list is empty
        """
        ...

    async def delete(self, obj: KubeObject) -> None:
        """
        Request deletion.

        Objects with finalizers get a deletion timestamp and stay until their
        finalizers are removed. Raises NotFoundError when already gone.
        """
        ...

    def watch(self, kind: Type[T]) -> AsyncIterator[WatchEvent]:
        """Stream change events for a kind until the consumer stops iterating."""
        ...
