"""Ensure semantics for the child resources of an EtcdCluster."""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog

from etcd_operator.exceptions import AlreadyExistsError, NotFoundError
from etcd_operator.resources import builders
from etcd_operator.resources.naming import (
    DEFAULT_CLUSTER_DOMAIN,
    client_service_name,
    config_map_name,
    peer_service_name,
    pvc_name,
    selector_labels,
    workload_name,
)
from etcd_operator.resources.platform import (
    CONFIG_MAP,
    PERSISTENT_VOLUME_CLAIM,
    POD,
    SERVICE,
    STATEFUL_SET,
    Manifest,
    PlatformClient,
)
from etcd_operator.schemas import EtcdCluster

logger = structlog.get_logger(__name__)


class ChildKind(str, Enum):
    """Child resources owned by an EtcdCluster."""

    WORKLOAD = "workload"
    CLIENT_SERVICE = "client-service"
    PEER_SERVICE = "peer-service"
    CONFIG = "config"


# Config first so the pods never start without their bootstrap script.
ENSURE_ORDER = (ChildKind.CONFIG, ChildKind.PEER_SERVICE, ChildKind.CLIENT_SERVICE, ChildKind.WORKLOAD)


def initial_replicas(cluster: EtcdCluster) -> int:
    """Replica count for a freshly created workload set: just the founding member."""
    return min(cluster.spec.size, 1)


def _containers_differ(current: List[Dict[str, Any]], desired: List[Dict[str, Any]]) -> bool:
    by_name = {c.get("name"): c for c in current}
    for container in desired:
        existing = by_name.get(container["name"])
        if existing is None:
            return True
        if existing.get("image") != container.get("image"):
            return True
        if existing.get("command") != container.get("command"):
            return True
    return len(current) != len(desired)


def _template_differs(current: Manifest, desired: Manifest) -> bool:
    current_template = current.get("spec", {}).get("template", {})
    desired_template = desired["spec"]["template"]

    current_annotations = current_template.get("metadata", {}).get("annotations") or {}
    for key, value in desired_template["metadata"].get("annotations", {}).items():
        if current_annotations.get(key) != value:
            return True

    current_pod = current_template.get("spec", {})
    desired_pod = desired_template["spec"]
    if _containers_differ(current_pod.get("containers") or [], desired_pod["containers"]):
        return True
    return _containers_differ(current_pod.get("initContainers") or [], desired_pod.get("initContainers", []))


def statefulset_differs(current: Manifest, desired: Manifest) -> bool:
    if current.get("spec", {}).get("replicas") != desired["spec"]["replicas"]:
        return True
    return _template_differs(current, desired)


def _port_set(spec: Dict[str, Any]) -> List[Tuple[Any, ...]]:
    return sorted(
        (p.get("name", ""), p.get("port"), p.get("targetPort", p.get("port")), p.get("protocol", "TCP"))
        for p in spec.get("ports") or []
    )


def service_differs(current: Manifest, desired: Manifest) -> bool:
    current_spec = current.get("spec", {})
    desired_spec = desired["spec"]
    if _port_set(current_spec) != _port_set(desired_spec):
        return True
    if (current_spec.get("selector") or {}) != desired_spec.get("selector", {}):
        return True
    return bool(current_spec.get("publishNotReadyAddresses")) != bool(
        desired_spec.get("publishNotReadyAddresses")
    )


def config_map_differs(current: Manifest, desired: Manifest) -> bool:
    return (current.get("data") or {}) != desired.get("data", {})


def _merge_metadata(updated: Manifest, desired: Manifest) -> None:
    meta = updated.setdefault("metadata", {})
    labels = meta.get("labels") or {}
    labels.update(desired["metadata"].get("labels", {}))
    meta["labels"] = labels
    if not meta.get("ownerReferences"):
        meta["ownerReferences"] = desired["metadata"]["ownerReferences"]


def apply_statefulset(current: Manifest, desired: Manifest) -> Manifest:
    updated = copy.deepcopy(current)
    _merge_metadata(updated, desired)
    updated["spec"]["replicas"] = desired["spec"]["replicas"]
    if _template_differs(current, desired):
        template = copy.deepcopy(desired["spec"]["template"])
        annotations = dict(current.get("spec", {}).get("template", {}).get("metadata", {}).get("annotations") or {})
        annotations.update(template["metadata"].get("annotations", {}))
        template["metadata"]["annotations"] = annotations
        updated["spec"]["template"] = template
    return updated


def apply_service(current: Manifest, desired: Manifest) -> Manifest:
    updated = copy.deepcopy(current)
    _merge_metadata(updated, desired)
    spec = updated.setdefault("spec", {})
    spec["ports"] = copy.deepcopy(desired["spec"]["ports"])
    spec["selector"] = dict(desired["spec"]["selector"])
    if "publishNotReadyAddresses" in desired["spec"]:
        spec["publishNotReadyAddresses"] = desired["spec"]["publishNotReadyAddresses"]
    return updated


def apply_config_map(current: Manifest, desired: Manifest) -> Manifest:
    updated = copy.deepcopy(current)
    _merge_metadata(updated, desired)
    updated["data"] = dict(desired["data"])
    return updated


class ResourceReconciler:
    """Creates or updates child resources so they match their builders.

    Only salient fields are compared, so repeated calls with unchanged
    inputs write at most once. The replica count is never decided here:
    callers pass it explicitly or the current value is kept.
    """

    def __init__(self, platform: PlatformClient, cluster_domain: str = DEFAULT_CLUSTER_DOMAIN) -> None:
        if platform is None:
            raise RuntimeError("ResourceReconciler requires a platform client")
        self.platform = platform
        self.cluster_domain = cluster_domain

    def _target(self, cluster: EtcdCluster, kind: ChildKind) -> Tuple[str, str]:
        if kind is ChildKind.WORKLOAD:
            return STATEFUL_SET, workload_name(cluster)
        if kind is ChildKind.CLIENT_SERVICE:
            return SERVICE, client_service_name(cluster)
        if kind is ChildKind.PEER_SERVICE:
            return SERVICE, peer_service_name(cluster)
        return CONFIG_MAP, config_map_name(cluster)

    def desired(self, cluster: EtcdCluster, kind: ChildKind, replicas: int = 0) -> Manifest:
        if kind is ChildKind.WORKLOAD:
            return builders.build_statefulset(cluster, replicas, self.cluster_domain)
        if kind is ChildKind.CLIENT_SERVICE:
            return builders.build_client_service(cluster)
        if kind is ChildKind.PEER_SERVICE:
            return builders.build_peer_service(cluster)
        return builders.build_config_map(cluster, self.cluster_domain)

    @staticmethod
    def _differs(kind: ChildKind, current: Manifest, desired: Manifest) -> bool:
        if kind is ChildKind.WORKLOAD:
            return statefulset_differs(current, desired)
        if kind is ChildKind.CONFIG:
            return config_map_differs(current, desired)
        return service_differs(current, desired)

    @staticmethod
    def _apply(kind: ChildKind, current: Manifest, desired: Manifest) -> Manifest:
        if kind is ChildKind.WORKLOAD:
            return apply_statefulset(current, desired)
        if kind is ChildKind.CONFIG:
            return apply_config_map(current, desired)
        return apply_service(current, desired)

    async def _fetch(self, api_kind: str, namespace: str, name: str) -> Optional[Manifest]:
        try:
            return await self.platform.get(api_kind, namespace, name)
        except NotFoundError:
            return None

    async def ensure(
        self,
        cluster: EtcdCluster,
        kind: ChildKind,
        replicas: Optional[int] = None,
    ) -> Manifest:
        """Make one child resource match its desired shape.

        For the workload set, ``replicas=None`` keeps the current replica
        count, or uses the founding count when the set does not exist yet.
        """
        api_kind, name = self._target(cluster, kind)
        current = await self._fetch(api_kind, cluster.namespace, name)

        if kind is ChildKind.WORKLOAD and replicas is None:
            if current is not None:
                replicas = current.get("spec", {}).get("replicas") or 0
            else:
                replicas = initial_replicas(cluster)
        desired = self.desired(cluster, kind, replicas or 0)

        if current is None:
            try:
                created = await self.platform.create(api_kind, desired)
                logger.info("Created child resource", kind=api_kind, name=name)
                return created
            except AlreadyExistsError:
                logger.debug("Child resource appeared concurrently", kind=api_kind, name=name)
                current = await self.platform.get(api_kind, cluster.namespace, name)

        if not self._differs(kind, current, desired):
            return current

        updated = await self.platform.update(api_kind, self._apply(kind, current, desired))
        logger.info("Updated child resource", kind=api_kind, name=name)
        return updated

    async def ensure_all(self, cluster: EtcdCluster) -> None:
        for kind in ENSURE_ORDER:
            await self.ensure(cluster, kind)

    async def scale_workload(self, cluster: EtcdCluster, replicas: int) -> Manifest:
        return await self.ensure(cluster, ChildKind.WORKLOAD, replicas=replicas)

    async def get_workload(self, cluster: EtcdCluster) -> Optional[Manifest]:
        return await self._fetch(STATEFUL_SET, cluster.namespace, workload_name(cluster))

    async def list_pods(self, cluster: EtcdCluster) -> List[Manifest]:
        return await self.platform.list(POD, cluster.namespace, selector_labels(cluster))

    async def get_pod(self, cluster: EtcdCluster, name: str) -> Optional[Manifest]:
        return await self._fetch(POD, cluster.namespace, name)

    async def delete_volume(self, cluster: EtcdCluster, ordinal: int) -> bool:
        """Delete the data claim of one ordinal. Returns False if it was already gone."""
        name = pvc_name(cluster, ordinal)
        try:
            await self.platform.delete(PERSISTENT_VOLUME_CLAIM, cluster.namespace, name)
        except NotFoundError:
            return False
        logger.info("Deleted volume claim", pvc=name)
        return True

    async def delete_all_volumes(self, cluster: EtcdCluster) -> int:
        claims = await self.platform.list(
            PERSISTENT_VOLUME_CLAIM, cluster.namespace, selector_labels(cluster)
        )
        deleted = 0
        for claim in claims:
            name = claim["metadata"]["name"]
            try:
                await self.platform.delete(PERSISTENT_VOLUME_CLAIM, cluster.namespace, name)
            except NotFoundError:
                continue
            deleted += 1
            logger.info("Deleted volume claim", pvc=name)
        return deleted
