"""Tests for member reachability probing."""

from __future__ import annotations

import asyncio

import pytest

from etcd_operator.orchestration import PodAddressProbe
from etcd_operator.resources import ResourceReconciler
from fakes import FakePlatform, make_cluster


@pytest.fixture
async def cluster(resources: ResourceReconciler, platform: FakePlatform):
    platform.pod_ips = False
    platform.pods_ready = False
    cluster = make_cluster()
    await resources.ensure_all(cluster)
    return cluster


@pytest.mark.asyncio
async def test_missing_pod_is_not_addressable(resources: ResourceReconciler, cluster) -> None:
    for mode in ("pod", "pod-ip", "dns"):
        assert not await PodAddressProbe(resources, mode=mode).is_addressable(cluster, 1)


@pytest.mark.asyncio
async def test_pod_mode_only_needs_the_pod(resources: ResourceReconciler, cluster) -> None:
    assert await PodAddressProbe(resources, mode="pod").is_addressable(cluster, 0)


@pytest.mark.asyncio
async def test_pod_ip_mode_needs_an_address(
    resources: ResourceReconciler,
    platform: FakePlatform,
    cluster,
) -> None:
    probe = PodAddressProbe(resources, mode="pod-ip")
    assert not await probe.is_addressable(cluster, 0)

    platform.set_pod("default", "example-0", pod_ip=True)
    assert await probe.is_addressable(cluster, 0)

    platform.objects[("Pod", "default", "example-0")]["metadata"]["deletionTimestamp"] = "2026-01-01T00:00:00Z"
    assert not await probe.is_addressable(cluster, 0)


@pytest.mark.asyncio
async def test_dns_mode_resolves_member_host(
    resources: ResourceReconciler,
    platform: FakePlatform,
    cluster,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    platform.set_pod("default", "example-0", pod_ip=True)
    lookups = []
    loop = asyncio.get_running_loop()

    async def fake_getaddrinfo(host, port, *args, **kwargs):
        lookups.append((host, port))
        if host.endswith(".cluster.local"):
            raise OSError("Name or service not known")
        return [(2, 1, 6, "", ("10.0.0.10", port))]

    monkeypatch.setattr(loop, "getaddrinfo", fake_getaddrinfo)

    probe = PodAddressProbe(resources, mode="dns")
    assert not await probe.is_addressable(cluster, 0)
    assert lookups == [("example-0.example-peer.default.svc.cluster.local", 2380)]

    probe = PodAddressProbe(resources, mode="dns", cluster_domain="example.org")
    assert await probe.is_addressable(cluster, 0)
