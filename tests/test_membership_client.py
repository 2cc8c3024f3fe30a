"""Tests for the etcd gateway membership client."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from etcd_operator.config import EtcdSettings
from etcd_operator.exceptions import (
    MembershipError,
    MembershipTimeoutError,
    MembershipUnavailableError,
)
from etcd_operator.membership import EtcdMembershipClient, MemberInfo
from fakes import make_cluster


class FakeGateway:
    """Just enough of etcd's JSON gateway."""

    def __init__(self) -> None:
        self.members: List[Dict[str, Any]] = [
            {"ID": "10276657743932975437", "name": "example-0",
             "peerURLs": ["http://example-0.example-peer.default.svc.cluster.local:2380"],
             "clientURLs": ["http://example-0.example-peer.default.svc.cluster.local:2379"]},
        ]
        self.requests: List[Dict[str, Any]] = []
        self.healthy = True
        self.delay = 0.0
        self.url = ""

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v3/cluster/member/list", self.list_members)
        app.router.add_post("/v3/cluster/member/add", self.add_member)
        app.router.add_post("/v3/cluster/member/remove", self.remove_member)
        app.router.add_get("/health", self.health)
        return app

    async def list_members(self, request: web.Request) -> web.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        return web.json_response({"header": {}, "members": self.members})

    async def add_member(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)
        member = {"ID": "4242", "peerURLs": body["peerURLs"]}
        self.members.append(member)
        return web.json_response({"member": member, "members": self.members})

    async def remove_member(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)
        before = len(self.members)
        self.members = [m for m in self.members if m["ID"] != body["ID"]]
        if len(self.members) == before:
            return web.json_response({"error": "member not found", "code": 5}, status=404)
        return web.json_response({"members": self.members})

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"health": "true" if self.healthy else "false"})


@pytest.fixture
async def gateway():
    fake = FakeGateway()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
async def client(gateway: FakeGateway):
    membership = EtcdMembershipClient([gateway.url], request_timeout=2, health_timeout=1)
    yield membership
    await membership.close()


def test_member_info_from_gateway() -> None:
    info = MemberInfo.from_gateway({"ID": "255", "peerURLs": ["http://a:2380"]})
    assert info.id == 255
    assert info.hex_id == "ff"
    assert not info.started


@pytest.mark.asyncio
async def test_list_members(client: EtcdMembershipClient) -> None:
    members = await client.list_members()
    assert len(members) == 1
    assert members[0].name == "example-0"
    assert members[0].started
    assert members[0].id == 10276657743932975437


@pytest.mark.asyncio
async def test_add_member(client: EtcdMembershipClient, gateway: FakeGateway) -> None:
    url = "http://example-1.example-peer.default.svc.cluster.local:2380"
    added = await client.add_member(url)

    assert added.id == 4242
    assert added.peer_urls == [url]
    assert not added.started
    assert gateway.requests == [{"peerURLs": [url]}]


@pytest.mark.asyncio
async def test_remove_member_sends_decimal_id(client: EtcdMembershipClient, gateway: FakeGateway) -> None:
    await client.remove_member(10276657743932975437)
    assert gateway.requests == [{"ID": "10276657743932975437"}]
    assert await client.list_members() == []


@pytest.mark.asyncio
async def test_error_response_raises(client: EtcdMembershipClient) -> None:
    with pytest.raises(MembershipError, match="member not found"):
        await client.remove_member(1)


@pytest.mark.asyncio
async def test_falls_back_to_next_endpoint(gateway: FakeGateway) -> None:
    membership = EtcdMembershipClient(["http://127.0.0.1:1", gateway.url], request_timeout=2)
    try:
        members = await membership.list_members()
    finally:
        await membership.close()
    assert [m.name for m in members] == ["example-0"]


@pytest.mark.asyncio
async def test_unreachable_endpoints_raise_unavailable() -> None:
    membership = EtcdMembershipClient(["http://127.0.0.1:1"], request_timeout=2)
    try:
        with pytest.raises(MembershipUnavailableError):
            await membership.list_members()
    finally:
        await membership.close()


@pytest.mark.asyncio
async def test_slow_endpoint_times_out(gateway: FakeGateway) -> None:
    gateway.delay = 1.0
    membership = EtcdMembershipClient([gateway.url], request_timeout=0.1)
    try:
        with pytest.raises(MembershipTimeoutError):
            await membership.list_members()
    finally:
        await membership.close()


@pytest.mark.asyncio
async def test_health_check(client: EtcdMembershipClient, gateway: FakeGateway) -> None:
    assert await client.health_check(gateway.url) is True
    gateway.healthy = False
    assert await client.health_check(gateway.url) is False


@pytest.mark.asyncio
async def test_health_check_unreachable_raises(client: EtcdMembershipClient) -> None:
    with pytest.raises(MembershipUnavailableError):
        await client.health_check("http://127.0.0.1:1")


def test_for_cluster_uses_client_service() -> None:
    membership = EtcdMembershipClient.for_cluster(make_cluster(), EtcdSettings())
    assert membership.endpoints == ["http://example-client.default.svc.cluster.local:2379"]


def test_for_cluster_honours_override() -> None:
    settings = EtcdSettings(endpoint_override="http://localhost:2379/", request_timeout=3)
    membership = EtcdMembershipClient.for_cluster(make_cluster(), settings)
    assert membership.endpoints == ["http://localhost:2379"]
    assert membership.request_timeout == 3


def test_requires_an_endpoint() -> None:
    with pytest.raises(ValueError):
        EtcdMembershipClient([])
