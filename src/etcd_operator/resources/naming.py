"""Stable names, labels and URLs derived from a cluster's identity."""

from __future__ import annotations

from typing import Dict, Optional

from etcd_operator.constants import (
    APP_NAME,
    CLIENT_PORT,
    LABEL_CLUSTER,
    LABEL_COMPONENT,
    LABEL_INSTANCE,
    LABEL_MANAGED_BY,
    LABEL_NAME,
    LABEL_VERSION,
    MANAGER_NAME,
    PEER_PORT,
    DATA_VOLUME,
)
from etcd_operator.schemas import EtcdCluster

DEFAULT_CLUSTER_DOMAIN = "cluster.local"


def workload_name(cluster: EtcdCluster) -> str:
    return cluster.name


def client_service_name(cluster: EtcdCluster) -> str:
    return f"{cluster.name}-client"


def peer_service_name(cluster: EtcdCluster) -> str:
    return f"{cluster.name}-peer"


def config_map_name(cluster: EtcdCluster) -> str:
    return f"{cluster.name}-config"


def member_name(cluster: EtcdCluster, ordinal: int) -> str:
    return f"{cluster.name}-{ordinal}"


def pvc_name(cluster: EtcdCluster, ordinal: int) -> str:
    return f"{DATA_VOLUME}-{cluster.name}-{ordinal}"


def member_ordinal(cluster: EtcdCluster, name: str) -> Optional[int]:
    """Ordinal encoded in a member or pod name of this cluster, if any."""
    prefix = f"{cluster.name}-"
    if not name.startswith(prefix):
        return None
    suffix = name[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def member_host(cluster: EtcdCluster, ordinal: int, domain: str = DEFAULT_CLUSTER_DOMAIN) -> str:
    return (
        f"{member_name(cluster, ordinal)}.{peer_service_name(cluster)}."
        f"{cluster.namespace}.svc.{domain}"
    )


def peer_url(cluster: EtcdCluster, ordinal: int, domain: str = DEFAULT_CLUSTER_DOMAIN) -> str:
    return f"http://{member_host(cluster, ordinal, domain)}:{PEER_PORT}"


def client_url(cluster: EtcdCluster, ordinal: int, domain: str = DEFAULT_CLUSTER_DOMAIN) -> str:
    return f"http://{member_host(cluster, ordinal, domain)}:{CLIENT_PORT}"


def client_service_url(cluster: EtcdCluster, domain: str = DEFAULT_CLUSTER_DOMAIN) -> str:
    return (
        f"http://{client_service_name(cluster)}.{cluster.namespace}.svc.{domain}:{CLIENT_PORT}"
    )


def selector_labels(cluster: EtcdCluster) -> Dict[str, str]:
    """Labels that identify the pods of one cluster."""
    return {
        LABEL_NAME: APP_NAME,
        LABEL_INSTANCE: cluster.name,
        LABEL_CLUSTER: cluster.name,
    }


def standard_labels(cluster: EtcdCluster, component: str = "database") -> Dict[str, str]:
    labels = selector_labels(cluster)
    labels.update({
        LABEL_COMPONENT: component,
        LABEL_MANAGED_BY: MANAGER_NAME,
        LABEL_VERSION: cluster.spec.version,
    })
    return labels
