"""Watches cluster objects and runs reconciliation workers."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import aiohttp
import structlog
import uvicorn
from kubernetes_asyncio.client.rest import ApiException

from etcd_operator.config import Settings
from etcd_operator.constants import LABEL_CLUSTER, LABEL_MANAGED_BY, MANAGER_NAME
from etcd_operator.core.controller import ReconciliationController
from etcd_operator.exceptions import PlatformError
from etcd_operator.resources.platform import KubernetesPlatformClient
from etcd_operator.runtime.workqueue import WorkQueue
from etcd_operator.utils.metrics import OperatorMetrics
from etcd_operator.utils.retry import RetryConfig, RetryError, retry_async
from etcd_operator.web import create_app

logger = structlog.get_logger(__name__)

WATCH_RETRY = RetryConfig(
    max_attempts=5,
    base_delay=1.0,
    max_delay=60.0,
    jitter=True,
    retry_on=(ApiException, PlatformError, aiohttp.ClientError, asyncio.TimeoutError),
)

EventStream = Callable[[], AsyncIterator[Tuple[str, Dict[str, Any]]]]


class OperatorManager:
    """Feeds the work queue from watches and drains it with N workers."""

    def __init__(
        self,
        controller: ReconciliationController,
        platform: KubernetesPlatformClient,
        settings: Settings,
        metrics: Optional[OperatorMetrics] = None,
        queue: Optional[WorkQueue] = None,
    ) -> None:
        self.controller = controller
        self.platform = platform
        self.settings = settings
        self.metrics = metrics
        self.queue = queue or WorkQueue()
        self.ready = False

    async def run(self, serve_api: bool = True) -> None:
        namespace = self.settings.kubernetes.namespace
        tasks: List[asyncio.Task[None]] = [
            asyncio.create_task(
                self._watch("clusters", lambda: self.platform.watch_clusters(namespace), self._cluster_key),
                name="watch-clusters",
            ),
            asyncio.create_task(
                self._watch(
                    "statefulsets",
                    lambda: self.platform.watch_statefulsets({LABEL_MANAGED_BY: MANAGER_NAME}, namespace),
                    self._owner_key,
                ),
                name="watch-statefulsets",
            ),
        ]
        for index in range(self.settings.reconcile.workers):
            tasks.append(asyncio.create_task(self._worker(index), name=f"worker-{index}"))
        if serve_api:
            tasks.append(asyncio.create_task(self._serve_api(), name="api"))

        self.ready = True
        logger.info(
            "Operator started",
            namespace=namespace or "*",
            workers=self.settings.reconcile.workers,
        )
        try:
            await asyncio.gather(*tasks)
        finally:
            self.ready = False
            self.queue.shutdown(self.settings.reconcile.workers)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.controller.close()
            logger.info("Operator stopped")

    @staticmethod
    def _cluster_key(obj: Dict[str, Any]) -> Optional[str]:
        meta = obj.get("metadata") or {}
        if not meta.get("name"):
            return None
        return f"{meta.get('namespace', 'default')}/{meta['name']}"

    @staticmethod
    def _owner_key(obj: Dict[str, Any]) -> Optional[str]:
        meta = obj.get("metadata") or {}
        owner = (meta.get("labels") or {}).get(LABEL_CLUSTER)
        if not owner:
            return None
        return f"{meta.get('namespace', 'default')}/{owner}"

    async def _consume(
        self,
        name: str,
        stream: EventStream,
        key_of: Callable[[Dict[str, Any]], Optional[str]],
    ) -> None:
        async for event_type, obj in stream():
            if event_type == "ERROR":
                logger.info("Watch expired, restarting", watch=name, reason=obj.get("reason"))
                return
            key = key_of(obj)
            if key is not None:
                self.queue.add(key)

    async def _watch(
        self,
        name: str,
        stream: EventStream,
        key_of: Callable[[Dict[str, Any]], Optional[str]],
    ) -> None:
        while not self.queue.is_shutdown:
            try:
                await retry_async(self._consume, name, stream, key_of, config=WATCH_RETRY)
            except RetryError as e:
                logger.error("Watch keeps failing", watch=name, error=str(e.last_exception))
                await asyncio.sleep(WATCH_RETRY.max_delay)

    async def _worker(self, index: int) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                return
            try:
                await self._process(key)
            finally:
                self.queue.done(key)

    async def _process(self, key: str) -> None:
        namespace, name = key.split("/", 1)
        timeout = self.settings.reconcile.reconcile_timeout
        try:
            result = await asyncio.wait_for(self.controller.reconcile(namespace, name), timeout=timeout)
        except asyncio.TimeoutError:
            delay = self.queue.add_rate_limited(key)
            logger.error("Reconcile timed out", key=key, timeout=timeout, retry_after=delay)
            return
        except Exception:
            delay = self.queue.add_rate_limited(key)
            logger.exception("Reconcile raised unexpectedly", key=key, retry_after=delay)
            return

        if result.error is not None:
            if result.requeue_after:
                self.queue.add_after(key, result.requeue_after)
            else:
                self.queue.add_rate_limited(key)
        elif result.requeue:
            self.queue.add_rate_limited(key)
        elif result.requeue_after:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        else:
            self.queue.forget(key)

    async def _serve_api(self) -> None:
        app = create_app(
            platform=self.platform,
            metrics=self.metrics or OperatorMetrics(),
            namespace=self.settings.kubernetes.namespace,
            readiness=lambda: self.ready,
        )
        config = uvicorn.Config(
            app,
            host=self.settings.api.host,
            port=self.settings.api.port,
            log_level=self.settings.logging.level.lower(),
        )
        server = uvicorn.Server(config)
        await server.serve()
