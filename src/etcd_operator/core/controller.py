"""Reconciliation state machine for EtcdCluster objects.

Every pass re-reads the cluster and decides what to do from its spec and
recorded status alone. Within a pass the order is always: ensure child
resources, take at most one scaling step, write status.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import structlog

from etcd_operator.config import EtcdSettings, ReconcileSettings
from etcd_operator.constants import (
    CONDITION_AVAILABLE,
    CONDITION_DEGRADED,
    CONDITION_PROGRESSING,
    CONDITION_READY,
    EVENT_CLUSTER_CREATED,
    EVENT_CLUSTER_DELETED,
    EVENT_CLUSTER_FAILED,
    EVENT_CLUSTER_RECOVERED,
    EVENT_CLUSTER_SCALED,
    EVENT_CLUSTER_STOPPED,
    FINALIZER,
    PVC_DELETE,
    REASON_CREATING,
    REASON_DELETING,
    REASON_FAILED,
    REASON_HEALTHY,
    REASON_RUNNING,
    REASON_SCALING,
    REASON_STOPPED,
    REASON_UNHEALTHY,
)
from etcd_operator.core.health_checker import HealthChecker
from etcd_operator.core.result import ReconcileResult
from etcd_operator.exceptions import (
    ClusterSpecError,
    ConflictError,
    NotFoundError,
    PlatformError,
    TransientError,
)
from etcd_operator.membership import EtcdMembershipClient, MembershipClient
from etcd_operator.monitoring.events import EventRecorder
from etcd_operator.monitoring.status import StatusAggregator
from etcd_operator.orchestration.reachability import PodAddressProbe, ReachabilityProbe
from etcd_operator.orchestration.scaling import ScalingOrchestrator, StepOutcome, StepReport
from etcd_operator.resources.naming import client_service_url
from etcd_operator.resources.platform import PlatformClient
from etcd_operator.resources.reconciler import ResourceReconciler
from etcd_operator.schemas import ClusterPhase, EtcdCluster, set_condition, validate_cluster_spec
from etcd_operator.utils.logging import bind_cluster, unbind_cluster
from etcd_operator.utils.metrics import OperatorMetrics

logger = structlog.get_logger(__name__)

MembershipFactory = Callable[[EtcdCluster], MembershipClient]


@dataclass
class _Transition:
    phase: ClusterPhase
    result: ReconcileResult


class ReconciliationController:
    """Drives one EtcdCluster at a time toward its desired state.

    Safe to call concurrently for different clusters. The caller must not
    run two passes for the same cluster at once.
    """

    def __init__(
        self,
        platform: PlatformClient,
        resources: ResourceReconciler,
        aggregator: StatusAggregator,
        scaler: ScalingOrchestrator,
        membership_factory: MembershipFactory,
        reconcile_settings: Optional[ReconcileSettings] = None,
        etcd_settings: Optional[EtcdSettings] = None,
        health_checker: Optional[HealthChecker] = None,
        events: Optional[EventRecorder] = None,
        metrics: Optional[OperatorMetrics] = None,
    ) -> None:
        if platform is None or membership_factory is None:
            raise RuntimeError("ReconciliationController requires a platform client and membership factory")
        self.platform = platform
        self.resources = resources
        self.aggregator = aggregator
        self.scaler = scaler
        self.membership_factory = membership_factory
        self.settings = reconcile_settings or ReconcileSettings()
        self.etcd_settings = etcd_settings or EtcdSettings()
        self.health_checker = health_checker or HealthChecker(timeout=self.etcd_settings.health_timeout)
        self.events = events or EventRecorder(platform)
        self.metrics = metrics
        self._clients: Dict[str, MembershipClient] = {}

        self._handlers: Dict[ClusterPhase, Callable[[EtcdCluster], Awaitable[_Transition]]] = {
            ClusterPhase.UNINITIALIZED: self._handle_uninitialized,
            ClusterPhase.CREATING: self._handle_creating,
            ClusterPhase.RUNNING: self._handle_running,
            ClusterPhase.SCALING: self._handle_scaling,
            ClusterPhase.STOPPED: self._handle_stopped,
            ClusterPhase.FAILED: self._handle_failed,
            # Deleting without a deletion timestamp is stale; start over.
            ClusterPhase.DELETING: self._handle_uninitialized,
        }

    @classmethod
    def build(
        cls,
        platform: PlatformClient,
        reconcile_settings: Optional[ReconcileSettings] = None,
        etcd_settings: Optional[EtcdSettings] = None,
        membership_factory: Optional[MembershipFactory] = None,
        probe: Optional[ReachabilityProbe] = None,
        metrics: Optional[OperatorMetrics] = None,
    ) -> "ReconciliationController":
        """Assemble a controller and its collaborators around one platform client."""
        reconcile_settings = reconcile_settings or ReconcileSettings()
        etcd_settings = etcd_settings or EtcdSettings()
        domain = etcd_settings.cluster_domain

        resources = ResourceReconciler(platform, cluster_domain=domain)
        aggregator = StatusAggregator(resources, cluster_domain=domain, metrics=metrics)
        events = EventRecorder(platform)
        if probe is None:
            probe = PodAddressProbe(
                resources,
                mode=etcd_settings.reachability_mode,
                cluster_domain=domain,
                timeout=etcd_settings.health_timeout,
            )
        if membership_factory is None:
            def membership_factory(cluster: EtcdCluster) -> MembershipClient:
                return EtcdMembershipClient.for_cluster(cluster, etcd_settings)

        scaler = ScalingOrchestrator(
            resources,
            aggregator,
            probe,
            events=events,
            metrics=metrics,
            retention_policy=reconcile_settings.pvc_retention_policy,
            cluster_domain=domain,
        )
        return cls(
            platform,
            resources,
            aggregator,
            scaler,
            membership_factory,
            reconcile_settings=reconcile_settings,
            etcd_settings=etcd_settings,
            events=events,
            metrics=metrics,
        )

    def membership_for(self, cluster: EtcdCluster) -> MembershipClient:
        client = self._clients.get(cluster.key)
        if client is None:
            client = self.membership_factory(cluster)
            self._clients[cluster.key] = client
        return client

    async def release(self, namespace: str, name: str) -> None:
        """Close the membership client of a cluster, if one is open."""
        client = self._clients.pop(f"{namespace}/{name}", None)
        if client is not None:
            await client.close()

    async def close(self) -> None:
        for key in list(self._clients):
            namespace, name = key.split("/", 1)
            await self.release(namespace, name)

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one pass for the cluster ``namespace/name``."""
        bind_cluster(namespace, name)
        started = time.monotonic()
        phase = ""
        outcome = "success"
        try:
            try:
                cluster = await self.platform.get_cluster(namespace, name)
            except NotFoundError:
                logger.debug("Cluster no longer exists")
                await self.release(namespace, name)
                if self.metrics is not None:
                    self.metrics.forget_cluster(namespace, name)
                return ReconcileResult.done()

            phase = cluster.phase.value
            result = await self._reconcile(cluster)
            if result.error is not None:
                outcome = "error"
            return result
        except ConflictError as e:
            outcome = "conflict"
            logger.info("Cluster changed during pass, retrying", error=str(e))
            return ReconcileResult.now()
        except TransientError as e:
            outcome = "error"
            logger.warning("Transient failure, requeueing", error=str(e), retry_after=self.settings.requeue_interval)
            return ReconcileResult.after(self.settings.requeue_interval)
        finally:
            if self.metrics is not None:
                self.metrics.record_reconcile(phase, outcome, time.monotonic() - started)
            unbind_cluster()

    async def _reconcile(self, cluster: EtcdCluster) -> ReconcileResult:
        if cluster.being_deleted:
            return await self._handle_deletion(cluster)

        if FINALIZER not in cluster.metadata.finalizers:
            await self.platform.add_finalizer(cluster, FINALIZER)
            logger.info("Added finalizer")
            return ReconcileResult.now()

        before = cluster.status.fingerprint()
        phase = cluster.phase
        transition = await self._handlers[phase](cluster)
        if transition.phase is not phase:
            logger.info("Phase transition", previous=phase.value, phase=transition.phase.value)

        cluster.status.phase = transition.phase.value
        await self.aggregator.refresh(cluster, self.membership_for(cluster))
        if transition.phase in (ClusterPhase.RUNNING, ClusterPhase.STOPPED):
            cluster.status.observed_generation = cluster.metadata.generation

        if cluster.status.fingerprint() != before:
            await self.platform.update_cluster_status(cluster)
        return transition.result

    # Phase handlers

    async def _handle_uninitialized(self, cluster: EtcdCluster) -> _Transition:
        try:
            validate_cluster_spec(cluster.spec)
        except ClusterSpecError as e:
            return await self._fail(cluster, e.reason, e.message)

        set_condition(cluster.status.conditions, CONDITION_READY, False, REASON_CREATING, "Cluster is being created")
        set_condition(
            cluster.status.conditions,
            CONDITION_PROGRESSING,
            True,
            REASON_CREATING,
            f"Creating a {cluster.spec.size}-member cluster",
        )
        return _Transition(ClusterPhase.CREATING, ReconcileResult.now())

    async def _handle_creating(self, cluster: EtcdCluster) -> _Transition:
        try:
            validate_cluster_spec(cluster.spec)
        except ClusterSpecError as e:
            return await self._fail(cluster, e.reason, e.message)

        try:
            await self.resources.ensure_all(cluster)
        except ConflictError:
            raise
        except PlatformError as e:
            return await self._fail(cluster, REASON_FAILED, f"Failed to create resources: {e}")

        report = await self.scaler.step(cluster, self.membership_for(cluster))
        if report.converged:
            await self.events.normal(
                cluster, EVENT_CLUSTER_CREATED, f"Created etcd cluster with {cluster.spec.size} members"
            )
            return self._running(cluster, REASON_RUNNING, "Cluster is running")
        if report.outcome is StepOutcome.STOPPED:
            return await self._stopped(cluster)

        phase = ClusterPhase.CREATING if cluster.spec.size == 1 else ClusterPhase.SCALING
        self._progressing(cluster, REASON_CREATING, report)
        return _Transition(phase, ReconcileResult.after(self.settings.requeue_interval))

    async def _handle_running(self, cluster: EtcdCluster) -> _Transition:
        try:
            validate_cluster_spec(cluster.spec)
        except ClusterSpecError as e:
            return await self._fail(cluster, e.reason, e.message)

        await self.resources.ensure_all(cluster)
        observation = await self.aggregator.observe(cluster)
        desired = cluster.spec.size
        if observation.ready_count != desired or observation.replicas != desired:
            set_condition(
                cluster.status.conditions,
                CONDITION_PROGRESSING,
                True,
                REASON_SCALING,
                f"Scaling from {observation.ready_count} to {desired} members",
            )
            return _Transition(ClusterPhase.SCALING, ReconcileResult.now())

        membership = self.membership_for(cluster)
        health = await self.health_checker.check(observation, membership, self._health_endpoint(cluster))
        if not health.healthy:
            return await self._fail(cluster, REASON_UNHEALTHY, health.error or "Cluster is unhealthy")
        return self._running(cluster, REASON_HEALTHY, "Cluster is healthy")

    async def _handle_scaling(self, cluster: EtcdCluster) -> _Transition:
        try:
            validate_cluster_spec(cluster.spec)
        except ClusterSpecError as e:
            return await self._fail(cluster, e.reason, e.message)

        await self.resources.ensure_all(cluster)
        report = await self.scaler.step(cluster, self.membership_for(cluster))
        if report.converged:
            if cluster.status.observed_generation == 0:
                await self.events.normal(
                    cluster, EVENT_CLUSTER_CREATED, f"Created etcd cluster with {cluster.spec.size} members"
                )
            else:
                await self.events.normal(
                    cluster, EVENT_CLUSTER_SCALED, f"Scaled etcd cluster to {cluster.spec.size} members"
                )
            return self._running(cluster, REASON_RUNNING, "Cluster is running")
        if report.outcome is StepOutcome.STOPPED:
            return await self._stopped(cluster)

        self._progressing(cluster, REASON_SCALING, report)
        return _Transition(ClusterPhase.SCALING, ReconcileResult.after(self.settings.requeue_interval))

    async def _handle_stopped(self, cluster: EtcdCluster) -> _Transition:
        if cluster.spec.size > 0:
            try:
                validate_cluster_spec(cluster.spec)
            except ClusterSpecError as e:
                return await self._fail(cluster, e.reason, e.message)
            set_condition(
                cluster.status.conditions,
                CONDITION_PROGRESSING,
                True,
                REASON_SCALING,
                f"Restarting with {cluster.spec.size} members",
            )
            return _Transition(ClusterPhase.SCALING, ReconcileResult.now())

        if self.settings.pvc_retention_policy == PVC_DELETE:
            observation = await self.aggregator.observe(cluster)
            if observation.pods:
                # Claims are only released once their pods are gone.
                return _Transition(ClusterPhase.STOPPED, ReconcileResult.after(self.settings.requeue_interval))
            await self.resources.delete_all_volumes(cluster)
        return await self._stopped(cluster)

    async def _handle_failed(self, cluster: EtcdCluster) -> _Transition:
        try:
            validate_cluster_spec(cluster.spec)
        except ClusterSpecError as e:
            return await self._fail(cluster, e.reason, e.message)

        try:
            await self.resources.ensure_all(cluster)
        except ConflictError:
            raise
        except PlatformError as e:
            return await self._fail(cluster, REASON_FAILED, f"Failed to ensure resources: {e}")

        membership = self.membership_for(cluster)
        report = await self.scaler.step(cluster, membership)
        if report.converged:
            observation = await self.aggregator.observe(cluster)
            health = await self.health_checker.check(observation, membership, self._health_endpoint(cluster))
            if not health.healthy:
                return await self._fail(cluster, REASON_UNHEALTHY, health.error or "Cluster is unhealthy")
            await self.events.normal(cluster, EVENT_CLUSTER_RECOVERED, "Cluster recovered")
            return self._running(cluster, REASON_RUNNING, "Cluster recovered")
        if report.outcome is StepOutcome.STOPPED:
            return await self._stopped(cluster)

        set_condition(cluster.status.conditions, CONDITION_PROGRESSING, True, REASON_FAILED, report.message)
        return _Transition(ClusterPhase.FAILED, ReconcileResult.after(self.settings.failed_backoff))

    async def _handle_deletion(self, cluster: EtcdCluster) -> ReconcileResult:
        if FINALIZER not in cluster.metadata.finalizers:
            await self.release(cluster.namespace, cluster.name)
            return ReconcileResult.done()

        if cluster.phase is not ClusterPhase.DELETING:
            cluster.status.phase = ClusterPhase.DELETING.value
            set_condition(cluster.status.conditions, CONDITION_READY, False, REASON_DELETING, "Cluster is being deleted")
            set_condition(
                cluster.status.conditions, CONDITION_PROGRESSING, True, REASON_DELETING, "Cleaning up"
            )
            cluster = await self.platform.update_cluster_status(cluster)

        try:
            await self.release(cluster.namespace, cluster.name)
            if self.settings.pvc_retention_policy == PVC_DELETE:
                deleted = await self.resources.delete_all_volumes(cluster)
                logger.info("Released volume claims", count=deleted)
            await self.events.normal(cluster, EVENT_CLUSTER_DELETED, "Cluster cleanup finished")
            await self.platform.remove_finalizer(cluster, FINALIZER)
        except NotFoundError:
            return ReconcileResult.done()
        except PlatformError as e:
            logger.warning("Cleanup failed, keeping finalizer", error=str(e))
            return ReconcileResult.failed(e, retry_after=self.settings.deletion_retry_interval)

        if self.metrics is not None:
            self.metrics.forget_cluster(cluster.namespace, cluster.name)
        logger.info("Cluster cleanup finished, finalizer removed")
        return ReconcileResult.done()

    # Helpers

    def _health_endpoint(self, cluster: EtcdCluster) -> str:
        return self.etcd_settings.endpoint_override or client_service_url(
            cluster, self.etcd_settings.cluster_domain
        )

    def _running(self, cluster: EtcdCluster, reason: str, message: str) -> _Transition:
        conditions = cluster.status.conditions
        set_condition(conditions, CONDITION_READY, True, reason, message)
        set_condition(conditions, CONDITION_AVAILABLE, True, reason, message)
        set_condition(conditions, CONDITION_PROGRESSING, False, reason, message)
        set_condition(conditions, CONDITION_DEGRADED, False, reason, message)
        return _Transition(ClusterPhase.RUNNING, ReconcileResult.after(self.settings.health_check_interval))

    def _progressing(self, cluster: EtcdCluster, reason: str, report: StepReport) -> None:
        message = report.message or f"{report.replicas} of {cluster.spec.size} members"
        set_condition(cluster.status.conditions, CONDITION_PROGRESSING, True, reason, message)

    async def _stopped(self, cluster: EtcdCluster) -> _Transition:
        if cluster.phase is not ClusterPhase.STOPPED:
            await self.events.normal(cluster, EVENT_CLUSTER_STOPPED, "Cluster scaled to zero")
        message = "Cluster stopped by request"
        conditions = cluster.status.conditions
        set_condition(conditions, CONDITION_READY, False, REASON_STOPPED, message)
        set_condition(conditions, CONDITION_AVAILABLE, False, REASON_STOPPED, message)
        set_condition(conditions, CONDITION_PROGRESSING, False, REASON_STOPPED, message)
        set_condition(conditions, CONDITION_DEGRADED, True, REASON_STOPPED, message)
        return _Transition(ClusterPhase.STOPPED, ReconcileResult.after(self.settings.stopped_interval))

    async def _fail(self, cluster: EtcdCluster, reason: str, message: str) -> _Transition:
        if cluster.phase is not ClusterPhase.FAILED:
            logger.error("Cluster failed", reason=reason, message=message)
            await self.events.warning(cluster, EVENT_CLUSTER_FAILED, message)
        conditions = cluster.status.conditions
        set_condition(conditions, CONDITION_READY, False, reason, message)
        set_condition(conditions, CONDITION_DEGRADED, True, reason, message)
        set_condition(conditions, CONDITION_PROGRESSING, False, reason, message)
        return _Transition(ClusterPhase.FAILED, ReconcileResult.after(self.settings.failed_backoff))
