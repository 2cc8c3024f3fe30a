"""Prometheus metrics for the operator."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class OperatorMetrics:
    """Reconcile and membership metrics on a private registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry(auto_describe=True)

        self._reconcile_counter = Counter(
            "etcd_operator_reconcile_total",
            "Total number of reconciliation passes",
            ["phase", "result"],
            registry=self.registry,
        )
        self._reconcile_duration = Histogram(
            "etcd_operator_reconcile_duration_seconds",
            "Reconciliation pass duration",
            registry=self.registry,
        )
        self._ready_members = Gauge(
            "etcd_operator_cluster_ready_members",
            "Ready etcd members per cluster",
            ["namespace", "cluster"],
            registry=self.registry,
        )
        self._membership_ops = Counter(
            "etcd_operator_membership_operations_total",
            "etcd membership changes issued by the operator",
            ["operation", "status"],
            registry=self.registry,
        )

    def record_reconcile(self, phase: str, result: str, duration: float) -> None:
        """Record a finished reconciliation pass."""
        self._reconcile_counter.labels(phase=phase or "Uninitialized", result=result).inc()
        self._reconcile_duration.observe(duration)

    def set_ready_members(self, namespace: str, cluster: str, count: int) -> None:
        self._ready_members.labels(namespace=namespace, cluster=cluster).set(count)

    def forget_cluster(self, namespace: str, cluster: str) -> None:
        try:
            self._ready_members.remove(namespace, cluster)
        except KeyError:
            pass

    def record_membership_op(self, operation: str, status: str) -> None:
        self._membership_ops.labels(operation=operation, status=status).inc()
