"""Child resources: naming, desired manifests, platform access and ensure logic."""

from etcd_operator.resources.platform import KubernetesPlatformClient, PlatformClient
from etcd_operator.resources.reconciler import ChildKind, ResourceReconciler

__all__ = [
    "ChildKind",
    "KubernetesPlatformClient",
    "PlatformClient",
    "ResourceReconciler",
]
