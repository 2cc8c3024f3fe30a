"""Liveness checking for running clusters."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from pydantic import BaseModel

from etcd_operator.exceptions import MembershipTimeoutError
from etcd_operator.membership import MembershipClient
from etcd_operator.monitoring.status import WorkloadObservation

logger = structlog.get_logger(__name__)


class ClusterHealth(BaseModel):
    """Health information for a cluster."""

    healthy: bool
    ready_members: int = 0
    replicas: int = 0
    error: Optional[str] = None


class HealthChecker:
    """Checks the workload set and asks etcd whether it is healthy.

    An unhealthy answer is reported; failing to get an answer at all raises
    a MembershipError so the caller can treat it as transient.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout

    async def check(
        self,
        observation: WorkloadObservation,
        membership: MembershipClient,
        endpoint: str,
    ) -> ClusterHealth:
        if observation.replicas > 0 and observation.ready_count == 0:
            return ClusterHealth(
                healthy=False,
                replicas=observation.replicas,
                error="no members are ready",
            )

        try:
            ok = await asyncio.wait_for(membership.health_check(endpoint), timeout=self.timeout + 1)
        except asyncio.TimeoutError as e:
            raise MembershipTimeoutError(f"health check of {endpoint} timed out") from e

        if not ok:
            logger.warning("etcd reports unhealthy", endpoint=endpoint)
            return ClusterHealth(
                healthy=False,
                ready_members=observation.ready_count,
                replicas=observation.replicas,
                error=f"etcd at {endpoint} reports unhealthy",
            )
        return ClusterHealth(
            healthy=True,
            ready_members=observation.ready_count,
            replicas=observation.replicas,
        )
