"""Tests for the Kubernetes platform adapter's error mapping."""

from __future__ import annotations

import asyncio

import pytest
from kubernetes_asyncio import client
from kubernetes_asyncio.client.rest import ApiException

from etcd_operator.exceptions import AlreadyExistsError, ConflictError, NotFoundError, PlatformError
from etcd_operator.resources.platform import KubernetesPlatformClient, label_selector


@pytest.fixture
async def platform():
    adapter = KubernetesPlatformClient(client.ApiClient(), timeout=3)
    yield adapter
    await adapter.close()


def failing(exc: BaseException):
    async def call(*args, **kwargs):
        raise exc
    return call


def test_label_selector_is_sorted() -> None:
    assert label_selector({"b": "2", "a": "1"}) == "a=1,b=2"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc,expected",
    [
        (ApiException(status=404, reason="Not Found"), NotFoundError),
        (ApiException(status=409, reason="Conflict"), ConflictError),
        (ApiException(status=500, reason="Internal"), PlatformError),
        (asyncio.TimeoutError(), PlatformError),
    ],
)
async def test_errors_are_mapped(platform: KubernetesPlatformClient, exc, expected) -> None:
    with pytest.raises(expected):
        await platform._call("get thing", failing(exc))


@pytest.mark.asyncio
async def test_create_conflict_means_already_exists(platform: KubernetesPlatformClient) -> None:
    with pytest.raises(AlreadyExistsError):
        await platform._call(
            "create thing",
            failing(ApiException(status=409, reason="AlreadyExists")),
            on_conflict=AlreadyExistsError,
        )


@pytest.mark.asyncio
async def test_request_timeout_is_passed(platform: KubernetesPlatformClient) -> None:
    seen = {}

    async def call(*args, **kwargs):
        seen.update(kwargs)
        return {"ok": True}

    assert await platform._call("get thing", call, "name") == {"ok": True}
    assert seen["_request_timeout"] == 3


def test_unsupported_kind() -> None:
    adapter = KubernetesPlatformClient.__new__(KubernetesPlatformClient)
    with pytest.raises(ValueError):
        adapter._method("Deployment", "read")
