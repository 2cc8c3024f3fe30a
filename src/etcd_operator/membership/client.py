"""etcd membership administration over the v3 JSON gateway."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import aiohttp
import structlog

from etcd_operator.config import EtcdSettings
from etcd_operator.exceptions import (
    MembershipError,
    MembershipTimeoutError,
    MembershipUnavailableError,
)
from etcd_operator.resources.naming import client_service_url
from etcd_operator.schemas import EtcdCluster

logger = structlog.get_logger(__name__)


@dataclass
class MemberInfo:
    """An entry in the etcd membership list."""

    id: int
    name: str = ""
    peer_urls: List[str] = field(default_factory=list)
    client_urls: List[str] = field(default_factory=list)
    is_learner: bool = False

    @property
    def hex_id(self) -> str:
        return format(self.id, "x")

    @property
    def started(self) -> bool:
        """Unstarted members have been added but never joined."""
        return bool(self.name)

    @classmethod
    def from_gateway(cls, data: Dict[str, Any]) -> "MemberInfo":
        return cls(
            id=int(data.get("ID", 0)),
            name=data.get("name", ""),
            peer_urls=list(data.get("peerURLs") or []),
            client_urls=list(data.get("clientURLs") or []),
            is_learner=bool(data.get("isLearner", False)),
        )


class MembershipClient(Protocol):
    """Administrative surface of one etcd cluster."""

    async def list_members(self) -> List[MemberInfo]: ...

    async def add_member(self, peer_url: str) -> MemberInfo: ...

    async def remove_member(self, member_id: int) -> None: ...

    async def health_check(self, endpoint: str) -> bool: ...

    async def close(self) -> None: ...


class EtcdMembershipClient:
    """Talks to etcd's gRPC gateway with aiohttp.

    Endpoints are tried in order; the first one that answers wins. Nothing
    is retried beyond that.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        request_timeout: float = 10.0,
        health_timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        if not endpoints:
            raise ValueError("At least one etcd endpoint is required")
        self.endpoints = [e.rstrip("/") for e in endpoints]
        self.request_timeout = request_timeout
        self.health_timeout = health_timeout
        self._session = session
        self._owns_session = session is None

    def _connect(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._connect()
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        errors: List[str] = []
        timeouts = 0

        for endpoint in self.endpoints:
            url = f"{endpoint}{path}"
            try:
                async with session.post(url, json=payload, timeout=timeout) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError as e:
                        raise MembershipError(f"{path} returned a non-JSON body ({response.status})") from e
                    if response.status >= 400:
                        message = body.get("message") or body.get("error") if isinstance(body, dict) else body
                        raise MembershipError(f"{path} failed with {response.status}: {message}")
                    return body or {}
            except asyncio.TimeoutError:
                timeouts += 1
                errors.append(f"{endpoint}: timeout")
                logger.debug("etcd endpoint timed out", endpoint=endpoint, path=path)
            except aiohttp.ClientError as e:
                errors.append(f"{endpoint}: {e}")
                logger.debug("etcd endpoint unreachable", endpoint=endpoint, path=path, error=str(e))

        if timeouts == len(self.endpoints):
            raise MembershipTimeoutError(f"{path} timed out: {'; '.join(errors)}")
        raise MembershipUnavailableError(f"{path} failed on all endpoints: {'; '.join(errors)}")

    async def list_members(self) -> List[MemberInfo]:
        body = await self._post("/v3/cluster/member/list", {})
        return [MemberInfo.from_gateway(m) for m in body.get("members") or []]

    async def add_member(self, peer_url: str) -> MemberInfo:
        body = await self._post("/v3/cluster/member/add", {"peerURLs": [peer_url]})
        member = body.get("member")
        if not member:
            raise MembershipError(f"member add for {peer_url} returned no member")
        info = MemberInfo.from_gateway(member)
        logger.info("Added etcd member", peer_url=peer_url, member_id=info.hex_id)
        return info

    async def remove_member(self, member_id: int) -> None:
        await self._post("/v3/cluster/member/remove", {"ID": str(member_id)})
        logger.info("Removed etcd member", member_id=format(member_id, "x"))

    async def health_check(self, endpoint: str) -> bool:
        """True if the endpoint reports healthy.

        An endpoint that answers but is unhealthy returns False; one that
        cannot be reached raises.
        """
        session = self._connect()
        url = f"{endpoint.rstrip('/')}/health"
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.health_timeout)) as response:
                body = await response.json(content_type=None)
        except ValueError:
            return False
        except asyncio.TimeoutError as e:
            raise MembershipTimeoutError(f"health check of {endpoint} timed out") from e
        except aiohttp.ClientError as e:
            raise MembershipUnavailableError(f"health check of {endpoint} failed: {e}") from e
        if not isinstance(body, dict):
            return False
        return str(body.get("health", "")).lower() == "true"

    @classmethod
    def for_cluster(cls, cluster: EtcdCluster, settings: EtcdSettings) -> "EtcdMembershipClient":
        """Client for a cluster, reached through its client service unless overridden."""
        endpoint = settings.endpoint_override or client_service_url(cluster, settings.cluster_domain)
        return cls(
            [endpoint],
            request_timeout=settings.request_timeout,
            health_timeout=settings.health_timeout,
        )
