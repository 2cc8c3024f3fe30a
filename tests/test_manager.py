"""Tests for the operator manager's event handling and result mapping."""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Tuple

import pytest

from etcd_operator.config import Settings
from etcd_operator.core import ReconcileResult
from etcd_operator.runtime import OperatorManager, WorkQueue
from etcd_operator.utils.retry import ItemBackoff, RetryConfig


class ScriptedController:
    """Returns queued results and records which keys were reconciled."""

    def __init__(self, results: List[ReconcileResult]) -> None:
        self.results = results
        self.calls: List[Tuple[str, str]] = []

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        self.calls.append((namespace, name))
        return self.results.pop(0)

    async def close(self) -> None:
        pass


def make_manager(results: List[ReconcileResult]) -> Tuple[OperatorManager, ScriptedController]:
    controller = ScriptedController(results)
    queue = WorkQueue(ItemBackoff(RetryConfig(base_delay=0.25, max_delay=10.0)))
    return OperatorManager(controller, platform=None, settings=Settings(), queue=queue), controller


def test_keys_from_objects() -> None:
    assert OperatorManager._cluster_key({"metadata": {"name": "a", "namespace": "db"}}) == "db/a"
    assert OperatorManager._cluster_key({"metadata": {}}) is None
    owned = {"metadata": {"name": "a", "namespace": "db", "labels": {"etcd.etcd.io/cluster": "a"}}}
    assert OperatorManager._owner_key(owned) == "db/a"
    assert OperatorManager._owner_key({"metadata": {"name": "x"}}) is None


@pytest.mark.asyncio
async def test_watch_events_are_queued() -> None:
    manager, _ = make_manager([])

    async def stream() -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        yield "ADDED", {"metadata": {"name": "a", "namespace": "default"}}
        yield "MODIFIED", {"metadata": {"name": "a", "namespace": "default"}}
        yield "ADDED", {"metadata": {"name": "b", "namespace": "default"}}
        yield "ERROR", {"reason": "Expired"}
        yield "ADDED", {"metadata": {"name": "c", "namespace": "default"}}

    await manager._consume("clusters", stream, manager._cluster_key)

    assert len(manager.queue) == 2


@pytest.mark.asyncio
async def test_successful_pass_forgets_backoff() -> None:
    manager, controller = make_manager([ReconcileResult.done()])
    manager.queue.backoff.next_delay("default/a")

    await manager._process("default/a")

    assert controller.calls == [("default", "a")]
    assert manager.queue.backoff.failures("default/a") == 0
    assert len(manager.queue) == 0


@pytest.mark.asyncio
async def test_requeue_after_schedules_key() -> None:
    manager, _ = make_manager([ReconcileResult.after(30)])

    await manager._process("default/a")

    assert "default/a" in manager.queue._timers
    manager.queue.shutdown()


@pytest.mark.asyncio
async def test_failed_pass_uses_rate_limit() -> None:
    manager, _ = make_manager([ReconcileResult.failed(RuntimeError("boom"))])

    await manager._process("default/a")

    assert manager.queue.backoff.failures("default/a") == 1
    manager.queue.shutdown()


@pytest.mark.asyncio
async def test_unexpected_exception_is_contained() -> None:
    manager, _ = make_manager([])

    await manager._process("default/a")

    assert manager.queue.backoff.failures("default/a") == 1
    manager.queue.shutdown()
