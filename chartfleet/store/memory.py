"""
In-memory resource store.

Implements the full store contract (resource versions, generation bumps,
finalizer-gated deletion, watches) inside the process. Used for local runs
and tests. With a snapshot path, every mutation is persisted as JSON so a
local fleet survives restarts.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Set, Type, TypeVar
from uuid import uuid4

import aiofiles  # type: ignore

from chartfleet.errors import AlreadyExistsError, ConflictError, NotFoundError
from chartfleet.models.chart_deployment import ChartDeployment
from chartfleet.models.cluster import Cluster
from chartfleet.models.cluster_release import ClusterRelease
from chartfleet.models.meta import KubeObject, ObjectKey, utc_now
from chartfleet.models.selector import LabelSelector
from chartfleet.store.base import EVENT_ADDED, EVENT_DELETED, EVENT_MODIFIED, WatchEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)

KNOWN_KINDS: Dict[str, Type[KubeObject]] = {
    Cluster.KIND: Cluster,
    ChartDeployment.KIND: ChartDeployment,
    ClusterRelease.KIND: ClusterRelease,
}


class InMemoryStore:
    """Process-local implementation of ResourceStore."""

    def __init__(self, snapshot_path: Optional[Path] = None) -> None:
        """
        Initialize the store.

        Args:
            snapshot_path: Optional JSON file to load from and persist to
        """
        self._objects: Dict[str, Dict[ObjectKey, KubeObject]] = {k: {} for k in KNOWN_KINDS}
        self._resource_version = 0
        self._subscribers: Dict[str, Set["asyncio.Queue[WatchEvent]"]] = {}
        self._save_lock = asyncio.Lock()
        self.snapshot_path = snapshot_path

        if snapshot_path is not None:
            self._load_snapshot()

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _bucket(self, kind: Type[KubeObject]) -> Dict[ObjectKey, KubeObject]:
        return self._objects.setdefault(kind.KIND, {})

    def _emit(self, event_type: str, obj: KubeObject) -> None:
        for queue in self._subscribers.get(obj.KIND, set()):
            event = WatchEvent(type=event_type, object=obj.model_copy(deep=True))  # type: ignore
            queue.put_nowait(event)

    async def list(
        self,
        kind: Type[T],
        namespace: Optional[str] = None,
        selector: Optional[LabelSelector] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[T]:
        if selector is not None:
            selector.validate_selector()

        results: List[T] = []
        for key in sorted(self._bucket(kind), key=str):
            obj = self._bucket(kind)[key]
            if namespace is not None and obj.metadata.namespace != namespace:
                continue
            if selector is not None and not selector.matches(obj.metadata.labels):
                continue
            if labels and any(obj.metadata.labels.get(k) != v for k, v in labels.items()):
                continue
            results.append(obj.model_copy(deep=True))  # type: ignore[arg-type]
        return results

    async def get(self, kind: Type[T], key: ObjectKey) -> T:
        obj = self._bucket(kind).get(key)
        if obj is None:
            raise NotFoundError(kind.KIND, str(key))
        return obj.model_copy(deep=True)  # type: ignore[return-value]

    async def create(self, obj: T) -> T:
        bucket = self._bucket(type(obj))
        if obj.key in bucket:
            raise AlreadyExistsError(obj.KIND, str(obj.key))

        stored = obj.model_copy(deep=True)
        stored.kind = obj.KIND
        stored.metadata.uid = stored.metadata.uid or str(uuid4())
        stored.metadata.creation_timestamp = utc_now()
        stored.metadata.generation = 1
        stored.metadata.deletion_timestamp = None
        stored.metadata.resource_version = self._next_resource_version()
        bucket[stored.key] = stored

        logger.debug(f"Created {obj.KIND} {stored.key}")
        self._emit(EVENT_ADDED, stored)
        await self._save_snapshot()
        return stored.model_copy(deep=True)

    async def update(self, obj: T) -> T:
        bucket = self._bucket(type(obj))
        existing = bucket.get(obj.key)
        if existing is None:
            raise NotFoundError(obj.KIND, str(obj.key))
        if obj.metadata.resource_version != existing.metadata.resource_version:
            raise ConflictError(
                obj.KIND,
                str(obj.key),
                f"resource version {obj.metadata.resource_version} is stale "
                f"(current {existing.metadata.resource_version})",
            )

        stored = obj.model_copy(deep=True)
        stored.kind = obj.KIND
        stored.metadata.uid = existing.metadata.uid
        stored.metadata.creation_timestamp = existing.metadata.creation_timestamp
        stored.metadata.deletion_timestamp = existing.metadata.deletion_timestamp
        stored.metadata.generation = existing.metadata.generation
        if getattr(stored, "spec", None) != getattr(existing, "spec", None):
            stored.metadata.generation += 1

        if stored.is_deleting and not stored.metadata.finalizers:
            del bucket[stored.key]
            logger.debug(f"Finalizers cleared, removed {obj.KIND} {stored.key}")
            self._emit(EVENT_DELETED, stored)
            await self._save_snapshot()
            return stored

        stored.metadata.resource_version = self._next_resource_version()
        bucket[stored.key] = stored
        self._emit(EVENT_MODIFIED, stored)
        await self._save_snapshot()
        return stored.model_copy(deep=True)

    async def delete(self, obj: KubeObject) -> None:
        bucket = self._bucket(type(obj))
        existing = bucket.get(obj.key)
        if existing is None:
            raise NotFoundError(obj.KIND, str(obj.key))

        if existing.metadata.finalizers:
            if existing.metadata.deletion_timestamp is None:
                existing.metadata.deletion_timestamp = utc_now()
                existing.metadata.resource_version = self._next_resource_version()
                logger.debug(
                    f"Deletion of {obj.KIND} {obj.key} pending on finalizers "
                    f"{existing.metadata.finalizers}"
                )
                self._emit(EVENT_MODIFIED, existing)
        else:
            del bucket[obj.key]
            logger.debug(f"Deleted {obj.KIND} {obj.key}")
            self._emit(EVENT_DELETED, existing)
        await self._save_snapshot()

    async def watch(self, kind: Type[T]) -> AsyncIterator[WatchEvent]:
        queue: "asyncio.Queue[WatchEvent]" = asyncio.Queue()
        subscribers = self._subscribers.setdefault(kind.KIND, set())
        subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            subscribers.discard(queue)

    def _load_snapshot(self) -> None:
        """Load objects from the snapshot file if it exists."""
        assert self.snapshot_path is not None
        if not self.snapshot_path.exists():
            return

        with open(self.snapshot_path, "r") as f:
            state = json.load(f)

        for kind_name, items in state.get("objects", {}).items():
            kind = KNOWN_KINDS.get(kind_name)
            if kind is None:
                logger.warning(f"Ignoring unknown kind {kind_name} in snapshot")
                continue
            for item in items:
                obj = kind.model_validate(item)
                self._bucket(kind)[obj.key] = obj
        self._resource_version = int(state.get("resource_version", 0))

        logger.info(
            f"Loaded store snapshot from {self.snapshot_path}: "
            + ", ".join(f"{len(v)} {k}" for k, v in self._objects.items())
        )

    async def _save_snapshot(self) -> None:
        """Persist all objects, writing to a temp file and renaming atomically."""
        if self.snapshot_path is None:
            return

        state = {
            "resource_version": self._resource_version,
            "saved_at": utc_now(),
            "objects": {
                kind_name: [obj.to_wire() for obj in bucket.values()]
                for kind_name, bucket in self._objects.items()
            },
        }
        async with self._save_lock:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.snapshot_path.with_suffix(".tmp")
            async with aiofiles.open(temp_file, "w") as f:
                await f.write(json.dumps(state, indent=2))
            temp_file.replace(self.snapshot_path)
        logger.debug(f"Saved store snapshot to {self.snapshot_path}")
