"""
Kubernetes-backed resource store.

ChartDeployments and ClusterReleases are custom resources; Clusters are read
from the Cluster API group. The kubernetes client is synchronous, so every
call runs in a worker thread.
"""

import asyncio
import logging
import threading
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from chartfleet.config.settings import StoreConfig
from chartfleet.errors import AlreadyExistsError, ConflictError, NotFoundError, StoreIOError
from chartfleet.models.chart_deployment import ChartDeployment
from chartfleet.models.cluster import Cluster
from chartfleet.models.cluster_release import ClusterRelease
from chartfleet.models.meta import KubeObject, ObjectKey
from chartfleet.models.selector import LabelSelector
from chartfleet.store.base import WatchEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)

# Server-side timeout for one watch request before it is reopened
WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_SECONDS = 5


def translate_api_exception(
    error: ApiException, kind: str, key: str, creating: bool = False
) -> StoreIOError:
    """
    Map a kubernetes ApiException onto the store error taxonomy.

    Args:
        error: Exception raised by the client
        kind: Resource kind involved
        key: "namespace/name" of the object, or the list scope
        creating: Whether the failing call was a create

    Returns:
        The StoreIOError subclass to raise
    """
    if error.status == 404:
        return NotFoundError(kind, key)
    if error.status == 409:
        if creating:
            return AlreadyExistsError(kind, key)
        return ConflictError(kind, key, error.reason or "object has been modified")
    return StoreIOError(f"{kind} {key}: {error.status} {error.reason}", status=error.status)


class KubernetesStore:
    """ResourceStore over the Kubernetes custom objects API."""

    def __init__(self, settings: StoreConfig, api: Optional[client.CustomObjectsApi] = None):
        """
        Initialize the store.

        Args:
            settings: Store section of the configuration
            api: Preconfigured client; built from kubeconfig or in-cluster config if omitted
        """
        self.settings = settings

        if api is None:
            try:
                if settings.in_cluster:
                    config.load_incluster_config()
                elif settings.context:
                    config.load_kube_config(context=settings.context)
                else:
                    config.load_kube_config()
            except Exception as e:
                logger.error(f"Failed to initialize Kubernetes client: {e}")
                raise
            api = client.CustomObjectsApi()

        self.api = api
        self._resources: Dict[str, Tuple[str, str, str]] = {
            ChartDeployment.KIND: (
                settings.api_group,
                settings.api_version,
                ChartDeployment.PLURAL,
            ),
            ClusterRelease.KIND: (
                settings.api_group,
                settings.api_version,
                ClusterRelease.PLURAL,
            ),
            Cluster.KIND: (
                settings.cluster_api_group,
                settings.cluster_api_version,
                Cluster.PLURAL,
            ),
        }
        logger.info(
            f"Kubernetes store initialized for {settings.api_group}/{settings.api_version}"
        )

    def _resource(self, kind: Type[KubeObject]) -> Tuple[str, str, str]:
        try:
            return self._resources[kind.KIND]
        except KeyError:
            raise StoreIOError(f"kind {kind.KIND!r} is not served by this store") from None

    async def _call(
        self,
        func: Callable[..., Any],
        kind: str,
        key: str,
        creating: bool = False,
        **kwargs: Any,
    ) -> Any:
        try:
            return await asyncio.to_thread(func, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, kind, key, creating) from e

    def _body(self, obj: KubeObject) -> Dict[str, Any]:
        group, version, _ = self._resource(type(obj))
        body = obj.to_wire()
        body["apiVersion"] = f"{group}/{version}"
        body["kind"] = obj.KIND
        return body

    async def list(
        self,
        kind: Type[T],
        namespace: Optional[str] = None,
        selector: Optional[LabelSelector] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[T]:
        group, version, plural = self._resource(kind)

        parts = []
        if selector is not None and not selector.is_empty:
            parts.append(selector.to_selector_string())
        if labels:
            parts.extend(f"{k}={v}" for k, v in sorted(labels.items()))
        label_selector = ",".join(parts) or None

        if namespace is not None:
            result = await self._call(
                self.api.list_namespaced_custom_object,
                kind.KIND,
                namespace,
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                label_selector=label_selector,
            )
        else:
            result = await self._call(
                self.api.list_cluster_custom_object,
                kind.KIND,
                "*",
                group=group,
                version=version,
                plural=plural,
                label_selector=label_selector,
            )

        items = [kind.model_validate(item) for item in result.get("items", [])]
        logger.debug(f"Listed {len(items)} {kind.KIND} (selector={label_selector})")
        return items

    async def get(self, kind: Type[T], key: ObjectKey) -> T:
        group, version, plural = self._resource(kind)
        result = await self._call(
            self.api.get_namespaced_custom_object,
            kind.KIND,
            str(key),
            group=group,
            version=version,
            namespace=key.namespace,
            plural=plural,
            name=key.name,
        )
        return kind.model_validate(result)

    async def create(self, obj: T) -> T:
        group, version, plural = self._resource(type(obj))
        result = await self._call(
            self.api.create_namespaced_custom_object,
            obj.KIND,
            str(obj.key),
            creating=True,
            group=group,
            version=version,
            namespace=obj.metadata.namespace,
            plural=plural,
            body=self._body(obj),
        )
        logger.debug(f"Created {obj.KIND} {obj.key}")
        return type(obj).model_validate(result)

    async def update(self, obj: T) -> T:
        """
        Replace the object, then its status subresource.

        The main resource ignores status writes, so a changed status is sent
        as a second request carrying the resource version the first returned.
        """
        group, version, plural = self._resource(type(obj))
        body = self._body(obj)
        result = await self._call(
            self.api.replace_namespaced_custom_object,
            obj.KIND,
            str(obj.key),
            group=group,
            version=version,
            namespace=obj.metadata.namespace,
            plural=plural,
            name=obj.metadata.name,
            body=body,
        )

        metadata = result.get("metadata", {})
        finalized = metadata.get("deletionTimestamp") and not metadata.get("finalizers")
        desired_status = body.get("status")
        if finalized or desired_status is None or result.get("status") == desired_status:
            return type(obj).model_validate(result)

        status_body = dict(result)
        status_body["status"] = desired_status
        result = await self._call(
            self.api.replace_namespaced_custom_object_status,
            obj.KIND,
            str(obj.key),
            group=group,
            version=version,
            namespace=obj.metadata.namespace,
            plural=plural,
            name=obj.metadata.name,
            body=status_body,
        )
        return type(obj).model_validate(result)

    async def delete(self, obj: KubeObject) -> None:
        group, version, plural = self._resource(type(obj))
        await self._call(
            self.api.delete_namespaced_custom_object,
            obj.KIND,
            str(obj.key),
            group=group,
            version=version,
            namespace=obj.metadata.namespace,
            plural=plural,
            name=obj.metadata.name,
        )
        logger.debug(f"Requested deletion of {obj.KIND} {obj.key}")

    async def watch(self, kind: Type[T]) -> AsyncIterator[WatchEvent]:
        """Stream events from a background thread running a kubernetes watch."""
        group, version, plural = self._resource(kind)
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[WatchEvent]" = asyncio.Queue()
        stop = threading.Event()

        def _run() -> None:
            while not stop.is_set():
                w = watch.Watch()
                try:
                    for event in w.stream(
                        self.api.list_cluster_custom_object,
                        group=group,
                        version=version,
                        plural=plural,
                        timeout_seconds=WATCH_TIMEOUT_SECONDS,
                    ):
                        if stop.is_set():
                            break
                        if event["type"] not in ("ADDED", "MODIFIED", "DELETED"):
                            continue
                        item = WatchEvent(
                            type=event["type"], object=kind.model_validate(event["object"])
                        )
                        loop.call_soon_threadsafe(queue.put_nowait, item)
                except ApiException as e:
                    if e.status == 410:
                        logger.info(f"{kind.KIND} watch resource version expired, restarting")
                        continue
                    logger.error(f"{kind.KIND} watch error: {e}")
                    stop.wait(WATCH_RETRY_SECONDS)
                except Exception as e:
                    logger.error(f"Unexpected {kind.KIND} watch error: {e}")
                    stop.wait(WATCH_RETRY_SECONDS)
                finally:
                    w.stop()
            logger.info(f"{kind.KIND} watch stopped")

        thread = threading.Thread(target=_run, name=f"watch-{plural}", daemon=True)
        thread.start()
        logger.info(f"Started {kind.KIND} watch thread")
        try:
            while True:
                yield await queue.get()
        finally:
            stop.set()
