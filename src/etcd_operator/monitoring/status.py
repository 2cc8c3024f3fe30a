"""Status aggregation: the one place that decides whether a member is ready."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import structlog

from etcd_operator.exceptions import MembershipError
from etcd_operator.membership import MemberInfo, MembershipClient
from etcd_operator.resources.naming import (
    DEFAULT_CLUSTER_DOMAIN,
    client_url,
    member_name,
    member_ordinal,
    peer_url,
)
from etcd_operator.resources.platform import Manifest
from etcd_operator.resources.reconciler import ResourceReconciler
from etcd_operator.schemas import EtcdCluster, Member
from etcd_operator.schemas.conditions import utcnow
from etcd_operator.utils.metrics import OperatorMetrics

logger = structlog.get_logger(__name__)


def pod_is_ready(pod: Manifest) -> bool:
    """A member pod is ready when it is running, not terminating and passes its readiness probe."""
    if (pod.get("metadata") or {}).get("deletionTimestamp"):
        return False
    status = pod.get("status") or {}
    if status.get("phase") != "Running":
        return False
    for condition in status.get("conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def find_member(
    members: List[MemberInfo],
    cluster: EtcdCluster,
    ordinal: int,
    domain: str = DEFAULT_CLUSTER_DOMAIN,
) -> Optional[MemberInfo]:
    """Membership entry for an ordinal, matched by name or by peer URL."""
    name = member_name(cluster, ordinal)
    url = peer_url(cluster, ordinal, domain)
    for member in members:
        if member.name == name or url in member.peer_urls:
            return member
    return None


@dataclass
class WorkloadObservation:
    """What the workload set and its pods look like right now."""

    exists: bool = False
    replicas: int = 0
    pods: Dict[int, Manifest] = field(default_factory=dict)
    ready: Set[int] = field(default_factory=set)

    @property
    def ready_count(self) -> int:
        return sum(1 for ordinal in self.ready if ordinal < self.replicas)

    def is_ready(self, ordinal: int) -> bool:
        return ordinal in self.ready

    def unready_ordinals(self) -> List[int]:
        return [ordinal for ordinal in range(self.replicas) if ordinal not in self.ready]


class StatusAggregator:
    """Reads child resources back into the cluster status."""

    def __init__(
        self,
        resources: ResourceReconciler,
        cluster_domain: str = DEFAULT_CLUSTER_DOMAIN,
        metrics: Optional[OperatorMetrics] = None,
    ) -> None:
        self.resources = resources
        self.cluster_domain = cluster_domain
        self.metrics = metrics

    async def observe(self, cluster: EtcdCluster) -> WorkloadObservation:
        workload = await self.resources.get_workload(cluster)
        if workload is None:
            return WorkloadObservation()

        observation = WorkloadObservation(
            exists=True,
            replicas=(workload.get("spec") or {}).get("replicas") or 0,
        )
        for pod in await self.resources.list_pods(cluster):
            ordinal = member_ordinal(cluster, pod["metadata"]["name"])
            if ordinal is None:
                continue
            observation.pods[ordinal] = pod
            if pod_is_ready(pod):
                observation.ready.add(ordinal)
        return observation

    async def admin_members(
        self,
        cluster: EtcdCluster,
        membership: MembershipClient,
    ) -> Optional[List[MemberInfo]]:
        """The etcd membership list, or None when etcd cannot be asked."""
        try:
            return await membership.list_members()
        except MembershipError as e:
            logger.warning("Could not list etcd members for status", error=str(e))
            return None

    def apply(
        self,
        cluster: EtcdCluster,
        observation: WorkloadObservation,
        admin_members: Optional[List[MemberInfo]],
    ) -> None:
        """Write observed counts, members and endpoints into cluster.status.

        Only ordinals known to etcd are recorded as members. When etcd could
        not be asked, previously recorded members are kept with fresh ready
        flags and nothing new is added.
        """
        status = cluster.status
        previous = {m.name: m for m in status.members}
        members: List[Member] = []

        for ordinal in range(observation.replicas):
            name = member_name(cluster, ordinal)
            if admin_members is not None:
                entry = find_member(admin_members, cluster, ordinal, self.cluster_domain)
                if entry is None:
                    continue
                member_id = entry.hex_id
            else:
                prior = previous.get(name)
                if prior is None:
                    continue
                member_id = prior.id
            members.append(
                Member(
                    name=name,
                    id=member_id,
                    peer_url=peer_url(cluster, ordinal, self.cluster_domain),
                    client_url=client_url(cluster, ordinal, self.cluster_domain),
                    ready=observation.is_ready(ordinal),
                )
            )

        status.ready_replicas = observation.ready_count
        status.members = members
        status.client_endpoints = [
            client_url(cluster, ordinal, self.cluster_domain)
            for ordinal in sorted(observation.ready)
            if ordinal < observation.replicas
        ]
        status.last_update_time = utcnow()

        if self.metrics is not None:
            self.metrics.set_ready_members(cluster.namespace, cluster.name, status.ready_replicas)

    async def refresh(
        self,
        cluster: EtcdCluster,
        membership: Optional[MembershipClient] = None,
    ) -> WorkloadObservation:
        observation = await self.observe(cluster)
        admin_members: Optional[List[MemberInfo]] = None
        if membership is not None and observation.ready_count > 0:
            admin_members = await self.admin_members(cluster, membership)
        self.apply(cluster, observation, admin_members)
        return observation
