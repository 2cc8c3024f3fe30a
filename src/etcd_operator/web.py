"""HTTP surface: probes, metrics and a read-only cluster listing."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, Response, status
from prometheus_client import make_asgi_app

from etcd_operator import __version__
from etcd_operator.resources.platform import PlatformClient
from etcd_operator.utils.metrics import OperatorMetrics


def create_app(
    platform: PlatformClient,
    metrics: OperatorMetrics,
    namespace: Optional[str] = None,
    readiness: Optional[Callable[[], bool]] = None,
) -> FastAPI:
    """Create the FastAPI application served next to the operator."""
    app = FastAPI(
        title="etcd operator",
        description="Lifecycle management for etcd clusters",
        version=__version__,
    )
    app.state.platform = platform
    app.state.namespace = namespace
    app.state.readiness = readiness or (lambda: True)

    app.mount("/metrics", make_asgi_app(registry=metrics.registry))

    @app.get("/healthz")
    async def healthz() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz(request: Request, response: Response) -> Dict[str, str]:
        if not request.app.state.readiness():
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "starting"}
        return {"status": "ready"}

    @app.get("/api/v1/clusters")
    async def list_clusters(request: Request) -> List[Dict[str, Any]]:
        """Current phase and membership of every managed cluster."""
        clusters = await request.app.state.platform.list_clusters(request.app.state.namespace)
        return [
            {
                "namespace": c.namespace,
                "name": c.name,
                "phase": c.phase.value,
                "size": c.spec.size,
                "readyReplicas": c.status.ready_replicas,
                "version": c.spec.version,
                "members": [m.model_dump(by_alias=True) for m in c.status.members],
            }
            for c in clusters
        ]

    return app
