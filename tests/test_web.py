"""Tests for the HTTP endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from etcd_operator.schemas import EtcdCluster
from etcd_operator.utils.metrics import OperatorMetrics
from etcd_operator.web import create_app
from fakes import FakePlatform, make_cluster


def make_client(platform: FakePlatform, metrics: OperatorMetrics, ready: bool = True) -> TestClient:
    app = create_app(platform, metrics, readiness=lambda: ready)
    return TestClient(app)


def test_healthz(platform: FakePlatform, metrics: OperatorMetrics) -> None:
    response = make_client(platform, metrics).get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_reflects_manager_state(platform: FakePlatform, metrics: OperatorMetrics) -> None:
    assert make_client(platform, metrics, ready=True).get("/readyz").status_code == 200
    response = make_client(platform, metrics, ready=False).get("/readyz")
    assert response.status_code == 503
    assert response.json() == {"status": "starting"}


def test_metrics_endpoint(platform: FakePlatform, metrics: OperatorMetrics) -> None:
    metrics.record_reconcile("Running", "success", 0.1)
    response = make_client(platform, metrics).get("/metrics/")
    assert response.status_code == 200
    assert "etcd_operator_reconcile_total" in response.text


def test_list_clusters(platform: FakePlatform, metrics: OperatorMetrics) -> None:
    cluster: EtcdCluster = make_cluster(size=3)
    cluster.status.phase = "Running"
    cluster.status.ready_replicas = 3
    platform.add_cluster(cluster)

    response = make_client(platform, metrics).get("/api/v1/clusters")

    assert response.status_code == 200
    assert response.json() == [
        {
            "namespace": "default",
            "name": "example",
            "phase": "Running",
            "size": 3,
            "readyReplicas": 3,
            "version": "v3.5.21",
            "members": [],
        }
    ]
