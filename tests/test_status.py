"""Tests for status aggregation."""

from __future__ import annotations

import pytest

from etcd_operator.exceptions import MembershipTimeoutError
from etcd_operator.monitoring import StatusAggregator, pod_is_ready
from etcd_operator.resources import ResourceReconciler
from etcd_operator.utils.metrics import OperatorMetrics
from fakes import FakeMembershipClient, FakePlatform, make_cluster


def test_pod_readiness() -> None:
    ready = {"status": {"phase": "Running", "conditions": [{"type": "Ready", "status": "True"}]}}
    assert pod_is_ready(ready)
    assert not pod_is_ready({"status": {"phase": "Pending"}})
    assert not pod_is_ready({"status": {"phase": "Running", "conditions": []}})
    assert not pod_is_ready({**ready, "metadata": {"deletionTimestamp": "2026-01-01T00:00:00Z"}})


@pytest.mark.asyncio
async def test_refresh_without_workload(aggregator: StatusAggregator, membership: FakeMembershipClient) -> None:
    cluster = make_cluster()
    observation = await aggregator.refresh(cluster, membership)

    assert not observation.exists
    assert cluster.status.ready_replicas == 0
    assert cluster.status.members == []
    assert cluster.status.last_update_time is not None
    assert membership.calls == []


@pytest.mark.asyncio
async def test_refresh_records_admitted_members_only(
    aggregator: StatusAggregator,
    resources: ResourceReconciler,
    platform: FakePlatform,
    membership: FakeMembershipClient,
) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    await resources.scale_workload(cluster, 3)
    membership.seed(0)
    membership.seed(1)
    platform.set_pod("default", "example-2", ready=False)

    observation = await aggregator.refresh(cluster, membership)

    assert observation.ready_count == 2
    status = cluster.status
    assert status.ready_replicas == 2
    assert [m.name for m in status.members] == ["example-0", "example-1"]
    assert all(m.ready for m in status.members)
    assert status.members[0].id == membership.members[0].hex_id
    assert status.members[0].peer_url == "http://example-0.example-peer.default.svc.cluster.local:2380"
    assert status.client_endpoints == [
        "http://example-0.example-peer.default.svc.cluster.local:2379",
        "http://example-1.example-peer.default.svc.cluster.local:2379",
    ]


@pytest.mark.asyncio
async def test_refresh_keeps_known_members_when_etcd_unreachable(
    aggregator: StatusAggregator,
    resources: ResourceReconciler,
    platform: FakePlatform,
    membership: FakeMembershipClient,
) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    await resources.scale_workload(cluster, 2)
    membership.seed(0)
    membership.seed(1)
    await aggregator.refresh(cluster, membership)

    membership.fail_with = MembershipTimeoutError("timed out")
    platform.set_pod("default", "example-1", ready=False)
    await aggregator.refresh(cluster, membership)

    assert [m.name for m in cluster.status.members] == ["example-0", "example-1"]
    assert [m.ready for m in cluster.status.members] == [True, False]
    assert cluster.status.ready_replicas == 1


@pytest.mark.asyncio
async def test_refresh_publishes_ready_gauge(
    aggregator: StatusAggregator,
    resources: ResourceReconciler,
    membership: FakeMembershipClient,
    metrics: OperatorMetrics,
) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    await aggregator.refresh(cluster, membership)

    value = metrics.registry.get_sample_value(
        "etcd_operator_cluster_ready_members",
        {"namespace": "default", "cluster": "example"},
    )
    assert value == 1.0
