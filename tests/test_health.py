"""Tests for the cluster health checker."""

from __future__ import annotations

import pytest

from etcd_operator.core import HealthChecker
from etcd_operator.exceptions import MembershipUnavailableError
from etcd_operator.monitoring import WorkloadObservation
from fakes import FakeMembershipClient

ENDPOINT = "http://example-client.default.svc.cluster.local:2379"


def observation(replicas: int, ready: int) -> WorkloadObservation:
    return WorkloadObservation(exists=True, replicas=replicas, ready=set(range(ready)))


@pytest.mark.asyncio
async def test_healthy_cluster(membership: FakeMembershipClient) -> None:
    health = await HealthChecker().check(observation(3, 3), membership, ENDPOINT)
    assert health.healthy
    assert health.ready_members == 3


@pytest.mark.asyncio
async def test_no_ready_members_is_unhealthy_without_asking(membership: FakeMembershipClient) -> None:
    health = await HealthChecker().check(observation(3, 0), membership, ENDPOINT)
    assert not health.healthy
    assert membership.calls == []


@pytest.mark.asyncio
async def test_etcd_reports_unhealthy(membership: FakeMembershipClient) -> None:
    membership.healthy = False
    health = await HealthChecker().check(observation(3, 3), membership, ENDPOINT)
    assert not health.healthy
    assert "unhealthy" in health.error


@pytest.mark.asyncio
async def test_unreachable_etcd_raises(membership: FakeMembershipClient) -> None:
    membership.fail_with = MembershipUnavailableError("refused")
    with pytest.raises(MembershipUnavailableError):
        await HealthChecker().check(observation(3, 3), membership, ENDPOINT)
