"""Whether a newly created ordinal can be reached by its peers."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from etcd_operator.constants import PEER_PORT
from etcd_operator.resources.naming import DEFAULT_CLUSTER_DOMAIN, member_host, member_name
from etcd_operator.resources.reconciler import ResourceReconciler
from etcd_operator.schemas import EtcdCluster

logger = structlog.get_logger(__name__)


class ReachabilityProbe(Protocol):
    async def is_addressable(self, cluster: EtcdCluster, ordinal: int) -> bool: ...


class PodAddressProbe:
    """Checks a member's pod and, in ``dns`` mode, its peer DNS record.

    Modes:
        pod     the pod exists
        pod-ip  the pod exists, is not terminating and has an IP
        dns     as pod-ip, and the member FQDN resolves
    """

    def __init__(
        self,
        resources: ResourceReconciler,
        mode: str = "pod-ip",
        cluster_domain: str = DEFAULT_CLUSTER_DOMAIN,
        timeout: float = 5.0,
    ) -> None:
        self.resources = resources
        self.mode = mode
        self.cluster_domain = cluster_domain
        self.timeout = timeout

    async def is_addressable(self, cluster: EtcdCluster, ordinal: int) -> bool:
        pod = await self.resources.get_pod(cluster, member_name(cluster, ordinal))
        if pod is None:
            return False
        if self.mode == "pod":
            return True
        if (pod.get("metadata") or {}).get("deletionTimestamp"):
            return False
        if not (pod.get("status") or {}).get("podIP"):
            return False
        if self.mode == "pod-ip":
            return True
        return await self._resolves(member_host(cluster, ordinal, self.cluster_domain))

    async def _resolves(self, host: str) -> bool:
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(loop.getaddrinfo(host, PEER_PORT), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("Member address does not resolve yet", host=host, error=str(e))
            return False
        return True
