"""etcd operator - lifecycle management for etcd clusters on Kubernetes."""

__version__ = "0.1.0"

from etcd_operator.config import Settings
from etcd_operator.core import ReconcileResult, ReconciliationController
from etcd_operator.membership import EtcdMembershipClient
from etcd_operator.orchestration import ScalingOrchestrator
from etcd_operator.resources import KubernetesPlatformClient, ResourceReconciler
from etcd_operator.schemas import ClusterPhase, EtcdCluster

__all__ = [
    "__version__",
    "Settings",
    "ReconcileResult",
    "ReconciliationController",
    "EtcdMembershipClient",
    "ScalingOrchestrator",
    "KubernetesPlatformClient",
    "ResourceReconciler",
    "ClusterPhase",
    "EtcdCluster",
]
