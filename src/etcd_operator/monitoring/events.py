"""Kubernetes events for cluster lifecycle transitions."""

from __future__ import annotations

import structlog

from etcd_operator.exceptions import PlatformError
from etcd_operator.resources.platform import PlatformClient
from etcd_operator.schemas import EtcdCluster

logger = structlog.get_logger(__name__)

NORMAL = "Normal"
WARNING = "Warning"


class EventRecorder:
    """Emits events; a failed emission is logged and never fails a pass."""

    def __init__(self, platform: PlatformClient) -> None:
        self.platform = platform

    async def record(self, cluster: EtcdCluster, event_type: str, reason: str, message: str) -> None:
        try:
            await self.platform.record_event(cluster, event_type, reason, message)
        except PlatformError as e:
            logger.warning("Failed to record event", reason=reason, error=str(e))

    async def normal(self, cluster: EtcdCluster, reason: str, message: str) -> None:
        await self.record(cluster, NORMAL, reason, message)

    async def warning(self, cluster: EtcdCluster, reason: str, message: str) -> None:
        await self.record(cluster, WARNING, reason, message)
