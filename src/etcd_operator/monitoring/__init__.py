"""Status aggregation and event emission."""

from etcd_operator.monitoring.events import EventRecorder
from etcd_operator.monitoring.status import StatusAggregator, WorkloadObservation, pod_is_ready

__all__ = ["EventRecorder", "StatusAggregator", "WorkloadObservation", "pod_is_ready"]
