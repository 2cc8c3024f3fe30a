"""Core reconciliation components."""

from etcd_operator.core.controller import ReconciliationController
from etcd_operator.core.health_checker import ClusterHealth, HealthChecker
from etcd_operator.core.result import ReconcileResult

__all__ = ["ReconciliationController", "ClusterHealth", "HealthChecker", "ReconcileResult"]
