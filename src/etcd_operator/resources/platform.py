"""Kubernetes API access behind a narrow interface.

The controller and its collaborators only see ``PlatformClient``; tests
substitute an in-memory implementation.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

import aiohttp
import structlog
from kubernetes_asyncio import client, watch
from kubernetes_asyncio import config as kube_config
from kubernetes_asyncio.client.rest import ApiException

from etcd_operator.config import KubernetesSettings
from etcd_operator.constants import API_VERSION, GROUP, KIND, MANAGER_NAME, PLURAL, VERSION
from etcd_operator.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    PlatformError,
)
from etcd_operator.schemas import EtcdCluster

logger = structlog.get_logger(__name__)

Manifest = Dict[str, Any]

STATEFUL_SET = "StatefulSet"
SERVICE = "Service"
CONFIG_MAP = "ConfigMap"
PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
POD = "Pod"

# kind -> (api attribute, method suffix)
_KIND_METHODS: Dict[str, Tuple[str, str]] = {
    STATEFUL_SET: ("apps", "stateful_set"),
    SERVICE: ("core", "service"),
    CONFIG_MAP: ("core", "config_map"),
    PERSISTENT_VOLUME_CLAIM: ("core", "persistent_volume_claim"),
    POD: ("core", "pod"),
}


def label_selector(labels: Dict[str, str]) -> str:
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


class PlatformClient(Protocol):
    """Operations the operator needs from the Kubernetes API."""

    async def get(self, kind: str, namespace: str, name: str) -> Manifest: ...

    async def list(self, kind: str, namespace: str, labels: Dict[str, str]) -> List[Manifest]: ...

    async def create(self, kind: str, body: Manifest) -> Manifest: ...

    async def update(self, kind: str, body: Manifest) -> Manifest: ...

    async def delete(self, kind: str, namespace: str, name: str) -> None: ...

    async def get_cluster(self, namespace: str, name: str) -> EtcdCluster: ...

    async def list_clusters(self, namespace: Optional[str] = None) -> List[EtcdCluster]: ...

    async def update_cluster_status(self, cluster: EtcdCluster) -> EtcdCluster: ...

    async def add_finalizer(self, cluster: EtcdCluster, finalizer: str) -> EtcdCluster: ...

    async def remove_finalizer(self, cluster: EtcdCluster, finalizer: str) -> EtcdCluster: ...

    async def record_event(
        self,
        cluster: EtcdCluster,
        event_type: str,
        reason: str,
        message: str,
    ) -> None: ...


class KubernetesPlatformClient:
    """PlatformClient backed by kubernetes_asyncio."""

    def __init__(self, api_client: client.ApiClient, timeout: float = 30.0) -> None:
        self.api_client = api_client
        self.apps = client.AppsV1Api(api_client)
        self.core = client.CoreV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)
        self.timeout = timeout

    @classmethod
    async def connect(cls, settings: KubernetesSettings) -> "KubernetesPlatformClient":
        """Load in-cluster credentials, falling back to a kubeconfig."""
        try:
            kube_config.load_incluster_config()
        except kube_config.ConfigException:
            await kube_config.load_kube_config(config_file=settings.kubeconfig)
        return cls(client.ApiClient(), timeout=settings.api_timeout)

    async def close(self) -> None:
        await self.api_client.close()

    def _method(self, kind: str, verb: str) -> Callable[..., Awaitable[Any]]:
        try:
            api, suffix = _KIND_METHODS[kind]
        except KeyError:
            raise ValueError(f"Unsupported kind: {kind}") from None
        return getattr(getattr(self, api), f"{verb}_namespaced_{suffix}")

    def _to_dict(self, obj: Any) -> Manifest:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    async def _call(
        self,
        description: str,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
        on_conflict: type[PlatformError] = ConflictError,
        **kwargs: Any,
    ) -> Any:
        try:
            return await call(*args, _request_timeout=self.timeout, **kwargs)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{description}: not found", status=404) from e
            if e.status == 409:
                raise on_conflict(f"{description}: {e.reason}", status=409) from e
            raise PlatformError(f"{description}: {e.status} {e.reason}", status=e.status) from e
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise PlatformError(f"{description}: {e.__class__.__name__} {e}") from e

    async def get(self, kind: str, namespace: str, name: str) -> Manifest:
        result = await self._call(f"get {kind} {namespace}/{name}", self._method(kind, "read"), name, namespace)
        return self._to_dict(result)

    async def list(self, kind: str, namespace: str, labels: Dict[str, str]) -> List[Manifest]:
        result = await self._call(
            f"list {kind} in {namespace}",
            self._method(kind, "list"),
            namespace,
            label_selector=label_selector(labels),
        )
        return [self._to_dict(item) for item in result.items]

    async def create(self, kind: str, body: Manifest) -> Manifest:
        meta = body["metadata"]
        result = await self._call(
            f"create {kind} {meta['namespace']}/{meta['name']}",
            self._method(kind, "create"),
            meta["namespace"],
            body,
            on_conflict=AlreadyExistsError,
        )
        return self._to_dict(result)

    async def update(self, kind: str, body: Manifest) -> Manifest:
        meta = body["metadata"]
        result = await self._call(
            f"update {kind} {meta['namespace']}/{meta['name']}",
            self._method(kind, "replace"),
            meta["name"],
            meta["namespace"],
            body,
        )
        return self._to_dict(result)

    async def delete(self, kind: str, namespace: str, name: str) -> None:
        await self._call(f"delete {kind} {namespace}/{name}", self._method(kind, "delete"), name, namespace)

    async def get_cluster(self, namespace: str, name: str) -> EtcdCluster:
        result = await self._call(
            f"get {KIND} {namespace}/{name}",
            self.custom.get_namespaced_custom_object,
            GROUP, VERSION, namespace, PLURAL, name,
        )
        return EtcdCluster.from_manifest(result)

    async def list_clusters(self, namespace: Optional[str] = None) -> List[EtcdCluster]:
        if namespace:
            result = await self._call(
                f"list {KIND} in {namespace}",
                self.custom.list_namespaced_custom_object,
                GROUP, VERSION, namespace, PLURAL,
            )
        else:
            result = await self._call(
                f"list {KIND}",
                self.custom.list_cluster_custom_object,
                GROUP, VERSION, PLURAL,
            )
        return [EtcdCluster.from_manifest(item) for item in result.get("items", [])]

    async def update_cluster_status(self, cluster: EtcdCluster) -> EtcdCluster:
        """Write the status subresource; a stale resourceVersion raises ConflictError."""
        result = await self._call(
            f"update {KIND} status {cluster.key}",
            self.custom.replace_namespaced_custom_object_status,
            GROUP, VERSION, cluster.namespace, PLURAL, cluster.name,
            cluster.to_manifest(),
        )
        return EtcdCluster.from_manifest(result)

    async def _replace_cluster(self, cluster: EtcdCluster, finalizers: List[str]) -> EtcdCluster:
        body = cluster.to_manifest()
        body["metadata"]["finalizers"] = finalizers
        result = await self._call(
            f"update {KIND} {cluster.key}",
            self.custom.replace_namespaced_custom_object,
            GROUP, VERSION, cluster.namespace, PLURAL, cluster.name,
            body,
        )
        return EtcdCluster.from_manifest(result)

    async def add_finalizer(self, cluster: EtcdCluster, finalizer: str) -> EtcdCluster:
        if finalizer in cluster.metadata.finalizers:
            return cluster
        return await self._replace_cluster(cluster, [*cluster.metadata.finalizers, finalizer])

    async def remove_finalizer(self, cluster: EtcdCluster, finalizer: str) -> EtcdCluster:
        if finalizer not in cluster.metadata.finalizers:
            return cluster
        remaining = [f for f in cluster.metadata.finalizers if f != finalizer]
        return await self._replace_cluster(cluster, remaining)

    async def record_event(
        self,
        cluster: EtcdCluster,
        event_type: str,
        reason: str,
        message: str,
    ) -> None:
        now = datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        body = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"generateName": f"{cluster.name}.", "namespace": cluster.namespace},
            "involvedObject": {
                "apiVersion": API_VERSION,
                "kind": KIND,
                "name": cluster.name,
                "namespace": cluster.namespace,
                "uid": cluster.metadata.uid,
                "resourceVersion": cluster.metadata.resource_version,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "count": 1,
            "firstTimestamp": now,
            "lastTimestamp": now,
            "source": {"component": MANAGER_NAME},
            "reportingComponent": MANAGER_NAME,
        }
        await self._call(
            f"record event {reason} for {cluster.key}",
            self.core.create_namespaced_event,
            cluster.namespace,
            body,
        )

    async def watch_clusters(
        self,
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> AsyncIterator[Tuple[str, Manifest]]:
        """Stream (event type, manifest) pairs for EtcdCluster objects."""
        kwargs: Dict[str, Any] = {"timeout_seconds": 300}
        if resource_version:
            kwargs["resource_version"] = resource_version
        w = watch.Watch()
        if namespace:
            stream = w.stream(
                self.custom.list_namespaced_custom_object, GROUP, VERSION, namespace, PLURAL, **kwargs
            )
        else:
            stream = w.stream(self.custom.list_cluster_custom_object, GROUP, VERSION, PLURAL, **kwargs)
        try:
            async for event in stream:
                yield event["type"], self._to_dict(event["object"])
        finally:
            w.stop()

    async def watch_statefulsets(
        self,
        labels: Dict[str, str],
        namespace: Optional[str] = None,
    ) -> AsyncIterator[Tuple[str, Manifest]]:
        """Stream (event type, manifest) pairs for operator-owned StatefulSets."""
        kwargs: Dict[str, Any] = {"label_selector": label_selector(labels), "timeout_seconds": 300}
        w = watch.Watch()
        if namespace:
            stream = w.stream(self.apps.list_namespaced_stateful_set, namespace, **kwargs)
        else:
            stream = w.stream(self.apps.list_stateful_set_for_all_namespaces, **kwargs)
        try:
            async for event in stream:
                yield event["type"], self._to_dict(event["object"])
        finally:
            w.stop()

