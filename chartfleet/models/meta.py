"""
Object metadata shared by every stored resource.

Field names are snake_case in Python and camelCase on the wire so the same
models round-trip through the Kubernetes API and the local JSON snapshot.
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KubeModel(BaseModel):
    """Base model with camelCase wire aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize using wire (camelCase) field names."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ObjectKey(BaseModel):
    """Namespace/name pair identifying an object."""

    model_config = ConfigDict(frozen=True)

    namespace: str = Field(..., description="Object namespace")
    name: str = Field(..., description="Object name")

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ObjectKey":
        """Parse a "namespace/name" string."""
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"Invalid object key {value!r}, expected 'namespace/name'")
        return cls(namespace=namespace, name=name)


def namespaced_name(namespace: str, name: str) -> str:
    """Identity string used for ordering and lookups."""
    return f"{namespace}/{name}"


class OwnerReference(KubeModel):
    """Back-reference from an owned object to its owner."""

    api_version: str = Field(..., description="Owner API version")
    kind: str = Field(..., description="Owner kind")
    name: str = Field(..., description="Owner name")
    uid: Optional[str] = Field(None, description="Owner UID")
    controller: Optional[bool] = Field(
        None, description="Whether the owner is the managing controller"
    )
    block_owner_deletion: Optional[bool] = Field(None)


class ObjectMeta(KubeModel):
    """Standard object metadata."""

    name: str = Field(..., description="Object name")
    namespace: str = Field("default", description="Object namespace")
    uid: Optional[str] = Field(None, description="Store-assigned unique id")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    generation: int = Field(1, description="Incremented by the store on every spec change")
    resource_version: Optional[str] = Field(
        None, description="Opaque version used for optimistic concurrency"
    )
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[str] = Field(
        None, description="Set by the store when deletion was requested"
    )
    creation_timestamp: Optional[str] = Field(None)
    owner_references: List[OwnerReference] = Field(default_factory=list)


class KubeObject(KubeModel):
    """A stored resource with metadata, spec and status."""

    KIND: ClassVar[str] = ""
    PLURAL: ClassVar[str] = ""

    api_version: Optional[str] = Field(None)
    kind: Optional[str] = Field(None)
    metadata: ObjectMeta

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def namespaced_name(self) -> str:
        return namespaced_name(self.metadata.namespace, self.metadata.name)

    @property
    def is_deleting(self) -> bool:
        """Has deletion been requested for this object?"""
        return self.metadata.deletion_timestamp is not None


def contains_finalizer(obj: KubeObject, finalizer: str) -> bool:
    """Check whether the object carries the finalizer."""
    return finalizer in obj.metadata.finalizers


def add_finalizer(obj: KubeObject, finalizer: str) -> bool:
    """Add a finalizer if missing. Returns True when the object changed."""
    if finalizer in obj.metadata.finalizers:
        return False
    obj.metadata.finalizers.append(finalizer)
    return True


def remove_finalizer(obj: KubeObject, finalizer: str) -> bool:
    """Remove a finalizer if present. Returns True when the object changed."""
    if finalizer not in obj.metadata.finalizers:
        return False
    obj.metadata.finalizers = [f for f in obj.metadata.finalizers if f != finalizer]
    return True


def utc_now() -> str:
    """Current time as an RFC 3339 string."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
