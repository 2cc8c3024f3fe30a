"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest
import yaml
from prometheus_client import CollectorRegistry

from etcd_operator.config import EtcdSettings, ReconcileSettings
from etcd_operator.core import ReconciliationController
from etcd_operator.monitoring import EventRecorder, StatusAggregator
from etcd_operator.orchestration import PodAddressProbe, ScalingOrchestrator
from etcd_operator.resources import ResourceReconciler
from etcd_operator.utils.logging import setup_logging
from etcd_operator.utils.metrics import OperatorMetrics
from fakes import FakeMembershipClient, FakeMembershipRegistry, FakePlatform


@pytest.fixture(autouse=True)
def setup_test_logging() -> None:
    """Setup logging for tests."""
    setup_logging(level="DEBUG", format_type="text")


@pytest.fixture
def journal() -> List[str]:
    """Ordered record of every write made through the fakes."""
    return []


@pytest.fixture
def platform(journal: List[str]) -> FakePlatform:
    return FakePlatform(journal=journal)


@pytest.fixture
def memberships(platform: FakePlatform) -> FakeMembershipRegistry:
    return FakeMembershipRegistry(platform)


@pytest.fixture
def membership(memberships: FakeMembershipRegistry) -> FakeMembershipClient:
    """Membership of the default ``example`` cluster."""
    return memberships.for_key("default", "example")


@pytest.fixture
def metrics() -> OperatorMetrics:
    return OperatorMetrics(registry=CollectorRegistry())


@pytest.fixture
def reconcile_settings() -> ReconcileSettings:
    return ReconcileSettings(
        requeue_interval=5,
        health_check_interval=60,
        stopped_interval=120,
        failed_backoff=90,
        deletion_retry_interval=15,
    )


@pytest.fixture
def etcd_settings() -> EtcdSettings:
    return EtcdSettings(reachability_mode="pod-ip")


@pytest.fixture
def resources(platform: FakePlatform) -> ResourceReconciler:
    return ResourceReconciler(platform)


@pytest.fixture
def aggregator(resources: ResourceReconciler, metrics: OperatorMetrics) -> StatusAggregator:
    return StatusAggregator(resources, metrics=metrics)


@pytest.fixture
def scaler(
    resources: ResourceReconciler,
    aggregator: StatusAggregator,
    platform: FakePlatform,
    metrics: OperatorMetrics,
) -> ScalingOrchestrator:
    return ScalingOrchestrator(
        resources,
        aggregator,
        PodAddressProbe(resources, mode="pod-ip"),
        events=EventRecorder(platform),
        metrics=metrics,
    )


@pytest.fixture
def controller(
    platform: FakePlatform,
    memberships: FakeMembershipRegistry,
    reconcile_settings: ReconcileSettings,
    etcd_settings: EtcdSettings,
    metrics: OperatorMetrics,
) -> ReconciliationController:
    return ReconciliationController.build(
        platform,
        reconcile_settings=reconcile_settings,
        etcd_settings=etcd_settings,
        membership_factory=memberships,
        metrics=metrics,
    )


@pytest.fixture
def sample_manifest() -> Dict[str, Any]:
    """Sample EtcdCluster manifest."""
    return {
        "apiVersion": "etcd.etcd.io/v1alpha1",
        "kind": "EtcdCluster",
        "metadata": {"name": "example", "namespace": "default"},
        "spec": {
            "size": 3,
            "version": "v3.5.21",
            "storage": {"size": "5Gi", "storageClassName": "fast"},
            "resources": {"requests": {"cpu": "200m", "memory": "256Mi"}},
        },
    }


@pytest.fixture
def manifest_file(tmp_path: Path, sample_manifest: Dict[str, Any]) -> Path:
    """Write the sample manifest to a temporary file."""
    path = tmp_path / "cluster.yaml"
    with open(path, "w") as f:
        yaml.dump(sample_manifest, f)
    return path
