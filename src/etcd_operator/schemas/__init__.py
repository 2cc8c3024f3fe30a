"""Pydantic schemas for the EtcdCluster resource."""

from etcd_operator.schemas.cluster import (
    ClusterPhase,
    Condition,
    EtcdCluster,
    EtcdClusterSpec,
    EtcdClusterStatus,
    Member,
    ObjectMeta,
    ResourceSpec,
    StorageSpec,
    validate_cluster_spec,
)
from etcd_operator.schemas.conditions import get_condition, is_condition_true, set_condition

__all__ = [
    "ClusterPhase",
    "Condition",
    "EtcdCluster",
    "EtcdClusterSpec",
    "EtcdClusterStatus",
    "Member",
    "ObjectMeta",
    "ResourceSpec",
    "StorageSpec",
    "validate_cluster_spec",
    "get_condition",
    "is_condition_true",
    "set_condition",
]
