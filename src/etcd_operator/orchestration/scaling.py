"""Progressive membership scaling.

Each call to ``ScalingOrchestrator.step`` makes at most one change to the
workload set's replica count and at most one net change to the etcd
membership list. Everything is re-derived from observed state on every
call, so a step may be interrupted at any point and simply re-run.

Scale up admits ordinal C only after every existing ordinal is ready.
Scale down removes the highest ordinal from etcd before its pod goes away.
Scale to zero drops the replica count to 0 in one move.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import structlog

from etcd_operator.constants import EVENT_MEMBER_ADDED, EVENT_MEMBER_REMOVED, PVC_DELETE
from etcd_operator.exceptions import MembershipError
from etcd_operator.membership import MemberInfo, MembershipClient
from etcd_operator.monitoring.events import EventRecorder
from etcd_operator.monitoring.status import StatusAggregator, WorkloadObservation, find_member
from etcd_operator.orchestration.reachability import ReachabilityProbe
from etcd_operator.resources.naming import (
    DEFAULT_CLUSTER_DOMAIN,
    member_name,
    member_ordinal,
    peer_url,
)
from etcd_operator.resources.reconciler import ResourceReconciler
from etcd_operator.schemas import EtcdCluster
from etcd_operator.utils.metrics import OperatorMetrics

logger = structlog.get_logger(__name__)


class StepOutcome(str, Enum):
    CONVERGED = "converged"
    PROGRESSING = "progressing"
    STOPPED = "stopped"


@dataclass
class StepReport:
    """What one step did and where it left the cluster."""

    outcome: StepOutcome
    action: str
    replicas: int
    message: str = ""

    @property
    def converged(self) -> bool:
        return self.outcome is StepOutcome.CONVERGED


class ScalingOrchestrator:
    """Moves a cluster one member at a time toward its desired size."""

    def __init__(
        self,
        resources: ResourceReconciler,
        aggregator: StatusAggregator,
        probe: ReachabilityProbe,
        events: Optional[EventRecorder] = None,
        metrics: Optional[OperatorMetrics] = None,
        retention_policy: str = PVC_DELETE,
        cluster_domain: str = DEFAULT_CLUSTER_DOMAIN,
    ) -> None:
        if resources is None or aggregator is None or probe is None:
            raise RuntimeError("ScalingOrchestrator requires resources, aggregator and probe")
        self.resources = resources
        self.aggregator = aggregator
        self.probe = probe
        self.events = events
        self.metrics = metrics
        self.retention_policy = retention_policy
        self.cluster_domain = cluster_domain

    async def step(self, cluster: EtcdCluster, membership: MembershipClient) -> StepReport:
        """Take at most one scaling action toward ``cluster.spec.size``."""
        desired = cluster.spec.size
        observation = await self.aggregator.observe(cluster)
        if not observation.exists:
            return StepReport(StepOutcome.PROGRESSING, "wait", 0, "workload set does not exist yet")

        current = observation.replicas
        if desired == 0:
            return await self._scale_to_zero(cluster, observation)
        if current > desired:
            return await self._scale_down(cluster, observation, membership)

        unready = observation.unready_ordinals()
        if unready:
            return await self._settle(cluster, observation, membership, unready)

        if current == desired:
            members = await membership.list_members()
            stray = self._find_stray(cluster, members, current)
            if stray is not None:
                return await self._evict(cluster, membership, stray, current)
            return StepReport(StepOutcome.CONVERGED, "none", current)

        return await self._scale_up(cluster, observation, membership)

    async def _scale_up(
        self,
        cluster: EtcdCluster,
        observation: WorkloadObservation,
        membership: MembershipClient,
    ) -> StepReport:
        current = observation.replicas
        if current > 0:
            members = await membership.list_members()
            stray = self._find_stray(cluster, members, current)
            if stray is not None:
                return await self._evict(cluster, membership, stray, current)
        elif self.retention_policy == PVC_DELETE:
            # A founding member must not start on the log of a previous cluster.
            if observation.pods:
                return StepReport(
                    StepOutcome.PROGRESSING, "wait", 0, "waiting for pods of the stopped cluster to terminate"
                )
            deleted = await self.resources.delete_all_volumes(cluster)
            if deleted:
                logger.info("Released volume claims before founding", count=deleted)

        await self.resources.scale_workload(cluster, current + 1)
        logger.info("Scaled workload up", replicas=current + 1, desired=cluster.spec.size)

        if current == 0:
            # Ordinal 0 founds a new cluster; there is nobody to ask.
            return StepReport(StepOutcome.PROGRESSING, "bootstrap", 1, "starting founding member")
        return await self._admit(cluster, membership, current, current + 1, fresh=True)

    async def _settle(
        self,
        cluster: EtcdCluster,
        observation: WorkloadObservation,
        membership: MembershipClient,
        unready: List[int],
    ) -> StepReport:
        """Wait for unready ordinals, finishing any admission left pending."""
        current = observation.replicas
        pending = [ordinal for ordinal in unready if ordinal > 0]
        if pending:
            members = await membership.list_members()
            stray = self._find_stray(cluster, members, current)
            if stray is not None:
                return await self._evict(cluster, membership, stray, current)
            for ordinal in pending:
                if find_member(members, cluster, ordinal, self.cluster_domain) is None:
                    return await self._admit(cluster, membership, ordinal, current, fresh=False)

        return StepReport(
            StepOutcome.PROGRESSING,
            "wait",
            current,
            f"waiting for members {', '.join(member_name(cluster, o) for o in unready)} to become ready",
        )

    async def _admit(
        self,
        cluster: EtcdCluster,
        membership: MembershipClient,
        ordinal: int,
        replicas: int,
        fresh: bool,
    ) -> StepReport:
        name = member_name(cluster, ordinal)
        if not await self.probe.is_addressable(cluster, ordinal):
            return StepReport(StepOutcome.PROGRESSING, "wait", replicas, f"{name} is not addressable yet")

        url = peer_url(cluster, ordinal, self.cluster_domain)
        members = await membership.list_members()
        entry = find_member(members, cluster, ordinal, self.cluster_domain)

        if entry is not None and not entry.started and fresh:
            logger.info("Removing unstarted member left by an earlier attempt", member=name, member_id=entry.hex_id)
            await self._remove(membership, entry)
            entry = None

        if entry is not None:
            return StepReport(StepOutcome.PROGRESSING, "wait", replicas, f"{name} is already a member")

        try:
            added = await membership.add_member(url)
        except MembershipError:
            self._record("add", "error")
            raise
        self._record("add", "success")
        logger.info("Admitted member", member=name, member_id=added.hex_id)
        if self.events is not None:
            await self.events.normal(cluster, EVENT_MEMBER_ADDED, f"Added member {name}")
        return StepReport(StepOutcome.PROGRESSING, "admit", replicas, f"admitted {name}")

    async def _scale_down(
        self,
        cluster: EtcdCluster,
        observation: WorkloadObservation,
        membership: MembershipClient,
    ) -> StepReport:
        current = observation.replicas
        highest = current - 1
        name = member_name(cluster, highest)

        members = await membership.list_members()
        entry = find_member(members, cluster, highest, self.cluster_domain)
        if entry is None:
            logger.info("Member already absent from etcd", member=name)
        else:
            await self._remove(membership, entry)
            if self.events is not None:
                await self.events.normal(cluster, EVENT_MEMBER_REMOVED, f"Removed member {name}")

        await self.resources.scale_workload(cluster, highest)
        logger.info("Scaled workload down", replicas=highest, desired=cluster.spec.size)

        if self.retention_policy == PVC_DELETE:
            await self.resources.delete_volume(cluster, highest)
        return StepReport(StepOutcome.PROGRESSING, "scale-down", highest, f"removed {name}")

    async def _scale_to_zero(self, cluster: EtcdCluster, observation: WorkloadObservation) -> StepReport:
        if observation.replicas != 0:
            await self.resources.scale_workload(cluster, 0)
            logger.info("Scaled workload to zero", previous=observation.replicas)
        return StepReport(StepOutcome.STOPPED, "stop", 0, "cluster stopped")

    def _find_stray(
        self,
        cluster: EtcdCluster,
        members: List[MemberInfo],
        replicas: int,
    ) -> Optional[MemberInfo]:
        """A membership entry that no ordinal below ``replicas`` accounts for."""
        valid_urls = {peer_url(cluster, o, self.cluster_domain) for o in range(replicas)}
        for member in members:
            if not member.started:
                if not valid_urls.intersection(member.peer_urls):
                    return member
                continue
            ordinal = member_ordinal(cluster, member.name)
            if ordinal is not None and ordinal >= replicas:
                return member
        return None

    async def _evict(
        self,
        cluster: EtcdCluster,
        membership: MembershipClient,
        member: MemberInfo,
        replicas: int,
    ) -> StepReport:
        label = member.name or ",".join(member.peer_urls)
        logger.warning("Evicting stray etcd member", member=label, member_id=member.hex_id)
        await self._remove(membership, member)
        if self.events is not None:
            await self.events.normal(cluster, EVENT_MEMBER_REMOVED, f"Removed stray member {label}")
        return StepReport(StepOutcome.PROGRESSING, "evict", replicas, f"evicted stray member {label}")

    async def _remove(self, membership: MembershipClient, member: MemberInfo) -> None:
        try:
            await membership.remove_member(member.id)
        except MembershipError:
            self._record("remove", "error")
            raise
        self._record("remove", "success")

    def _record(self, operation: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_membership_op(operation, status)
