"""Tests for child resource ensure semantics."""

from __future__ import annotations

import pytest

from etcd_operator.resources import ChildKind, ResourceReconciler
from etcd_operator.resources.platform import CONFIG_MAP, PERSISTENT_VOLUME_CLAIM, SERVICE, STATEFUL_SET
from fakes import FakePlatform, make_cluster


@pytest.mark.asyncio
async def test_ensure_all_creates_in_order(platform: FakePlatform, resources: ResourceReconciler) -> None:
    await resources.ensure_all(make_cluster())

    assert platform.journal == [
        "create ConfigMap example-config",
        "create Service example-peer",
        "create Service example-client",
        "create StatefulSet example",
    ]
    assert platform.statefulset("default", "example")["spec"]["replicas"] == 1


@pytest.mark.asyncio
async def test_ensure_is_idempotent(platform: FakePlatform, resources: ResourceReconciler) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    writes = platform.writes

    await resources.ensure_all(cluster)
    await resources.ensure_all(cluster)

    assert platform.writes == writes


@pytest.mark.asyncio
async def test_zero_size_creates_empty_workload(platform: FakePlatform, resources: ResourceReconciler) -> None:
    await resources.ensure_all(make_cluster(size=0))
    assert platform.statefulset("default", "example")["spec"]["replicas"] == 0


@pytest.mark.asyncio
async def test_lost_create_race_counts_as_success(platform: FakePlatform, resources: ResourceReconciler) -> None:
    platform.create_races.add((CONFIG_MAP, "example-config"))

    result = await resources.ensure(make_cluster(), ChildKind.CONFIG)

    assert result["metadata"]["name"] == "example-config"
    assert platform.names(CONFIG_MAP) == ["example-config"]


@pytest.mark.asyncio
async def test_version_change_updates_workload(platform: FakePlatform, resources: ResourceReconciler) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    await resources.scale_workload(cluster, 3)

    upgraded = make_cluster(version="v3.5.22")
    await resources.ensure(upgraded, ChildKind.WORKLOAD)

    sts = platform.statefulset("default", "example")
    assert sts["spec"]["template"]["spec"]["containers"][0]["image"] == "quay.io/coreos/etcd:v3.5.22"
    assert sts["spec"]["replicas"] == 3
    assert platform.journal[-1] == "update StatefulSet example"


@pytest.mark.asyncio
async def test_system_fields_do_not_cause_updates(platform: FakePlatform, resources: ResourceReconciler) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    service = platform.objects[(SERVICE, "default", "example-client")]
    service["spec"]["clusterIP"] = "10.96.0.12"
    service["metadata"]["uid"] = "abc"
    writes = platform.writes

    await resources.ensure(cluster, ChildKind.CLIENT_SERVICE)

    assert platform.writes == writes


@pytest.mark.asyncio
async def test_drifted_service_is_repaired_keeping_assigned_address(
    platform: FakePlatform,
    resources: ResourceReconciler,
) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    service = platform.objects[(SERVICE, "default", "example-client")]
    service["spec"]["clusterIP"] = "10.96.0.12"
    service["spec"]["ports"] = [{"name": "client", "port": 9999, "targetPort": 9999, "protocol": "TCP"}]

    await resources.ensure(cluster, ChildKind.CLIENT_SERVICE)

    repaired = platform.objects[(SERVICE, "default", "example-client")]
    assert [p["port"] for p in repaired["spec"]["ports"]] == [2379]
    assert repaired["spec"]["clusterIP"] == "10.96.0.12"


@pytest.mark.asyncio
async def test_scale_workload_sets_replicas(platform: FakePlatform, resources: ResourceReconciler) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    await resources.scale_workload(cluster, 2)

    assert platform.journal[-1] == "scale example 2"
    pods = await resources.list_pods(cluster)
    assert [p["metadata"]["name"] for p in pods] == ["example-0", "example-1"]


@pytest.mark.asyncio
async def test_delete_volume_tolerates_missing(platform: FakePlatform, resources: ResourceReconciler) -> None:
    cluster = make_cluster()
    await resources.ensure_all(cluster)

    assert await resources.delete_volume(cluster, 0) is True
    assert await resources.delete_volume(cluster, 0) is False
    assert platform.names(PERSISTENT_VOLUME_CLAIM) == []


@pytest.mark.asyncio
async def test_delete_all_volumes_only_touches_this_cluster(
    platform: FakePlatform,
    resources: ResourceReconciler,
) -> None:
    first, second = make_cluster("first"), make_cluster("second")
    await resources.ensure_all(first)
    await resources.ensure_all(second)
    await resources.scale_workload(first, 3)

    assert await resources.delete_all_volumes(first) == 3
    assert platform.names(PERSISTENT_VOLUME_CLAIM) == ["data-second-0"]
    assert platform.names(STATEFUL_SET) == ["first", "second"]
