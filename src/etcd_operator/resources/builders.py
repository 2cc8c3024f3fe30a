"""Desired manifests for the child resources of an EtcdCluster.

Every function here is pure: the same cluster, replica count and domain
always produce the same manifest.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict

from etcd_operator.constants import (
    ANNOTATION_CONFIG_HASH,
    API_VERSION,
    CLIENT_PORT,
    CONFIG_DIR,
    CONFIG_VOLUME,
    CONTAINER_NAME,
    DATA_DIR,
    DATA_VOLUME,
    DEFAULT_RESOURCE_LIMITS,
    DEFAULT_RESOURCE_REQUESTS,
    KIND,
    PEER_PORT,
)
from etcd_operator.resources.naming import (
    DEFAULT_CLUSTER_DOMAIN,
    client_service_name,
    config_map_name,
    peer_service_name,
    selector_labels,
    standard_labels,
    workload_name,
)
from etcd_operator.schemas import EtcdCluster

BOOTSTRAP_IMAGE = "busybox:1.36"
RUNTIME_VOLUME = "runtime"
RUNTIME_DIR = "/var/run/etcd-runtime"
RUNTIME_CONFIG = f"{RUNTIME_DIR}/etcd.conf.yml"

# Writes the etcd config file for this pod. Ordinal 0 founds the cluster;
# ordinal k joins an existing one whose members are exactly 0..k.
BOOTSTRAP_SCRIPT = """#!/bin/sh
set -eu
ORDINAL="${POD_NAME##*-}"
PEER_DOMAIN="${PEER_SERVICE}.${POD_NAMESPACE}.svc.${CLUSTER_DOMAIN}"
INITIAL_CLUSTER=""
i=0
while [ "$i" -le "$ORDINAL" ]; do
  ENTRY="${CLUSTER_NAME}-${i}=http://${CLUSTER_NAME}-${i}.${PEER_DOMAIN}:${PEER_PORT}"
  if [ -z "$INITIAL_CLUSTER" ]; then
    INITIAL_CLUSTER="$ENTRY"
  else
    INITIAL_CLUSTER="${INITIAL_CLUSTER},${ENTRY}"
  fi
  i=$((i + 1))
done
if [ "$ORDINAL" -eq 0 ]; then
  STATE=new
else
  STATE=existing
fi
cat > "$ETCD_CONFIG_FILE" <<EOF
name: ${POD_NAME}
data-dir: ${DATA_DIR}/default.etcd
listen-client-urls: http://0.0.0.0:${CLIENT_PORT}
listen-peer-urls: http://0.0.0.0:${PEER_PORT}
advertise-client-urls: http://${POD_NAME}.${PEER_DOMAIN}:${CLIENT_PORT}
initial-advertise-peer-urls: http://${POD_NAME}.${PEER_DOMAIN}:${PEER_PORT}
initial-cluster: ${INITIAL_CLUSTER}
initial-cluster-state: ${STATE}
initial-cluster-token: ${CLUSTER_NAME}
EOF
"""


def owner_reference(cluster: EtcdCluster) -> Dict[str, Any]:
    return {
        "apiVersion": API_VERSION,
        "kind": KIND,
        "name": cluster.name,
        "uid": cluster.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def _metadata(cluster: EtcdCluster, name: str, component: str) -> Dict[str, Any]:
    return {
        "name": name,
        "namespace": cluster.namespace,
        "labels": standard_labels(cluster, component),
        "ownerReferences": [owner_reference(cluster)],
    }


def build_config_data(cluster: EtcdCluster, domain: str = DEFAULT_CLUSTER_DOMAIN) -> Dict[str, str]:
    summary = "\n".join([
        f"cluster-name: {cluster.name}",
        f"cluster-domain: {domain}",
        f"peer-service: {peer_service_name(cluster)}",
        f"client-port: {CLIENT_PORT}",
        f"peer-port: {PEER_PORT}",
        f"data-dir: {DATA_DIR}",
        f"version: {cluster.spec.version}",
        "",
    ])
    return {"bootstrap.sh": BOOTSTRAP_SCRIPT, "etcd.conf": summary}


def config_hash(data: Dict[str, str]) -> str:
    encoded = json.dumps(data, sort_keys=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()[:16]


def build_config_map(cluster: EtcdCluster, domain: str = DEFAULT_CLUSTER_DOMAIN) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": _metadata(cluster, config_map_name(cluster), "config"),
        "data": build_config_data(cluster, domain),
    }


def build_client_service(cluster: EtcdCluster) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(cluster, client_service_name(cluster), "client"),
        "spec": {
            "type": "ClusterIP",
            "selector": selector_labels(cluster),
            "ports": [
                {"name": "client", "port": CLIENT_PORT, "targetPort": CLIENT_PORT, "protocol": "TCP"},
            ],
        },
    }


def build_peer_service(cluster: EtcdCluster) -> Dict[str, Any]:
    """Headless service giving every member a stable DNS name.

    Not-ready addresses are published so a joining member is resolvable
    before it has been admitted.
    """
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(cluster, peer_service_name(cluster), "peer"),
        "spec": {
            "clusterIP": "None",
            "publishNotReadyAddresses": True,
            "selector": selector_labels(cluster),
            "ports": [
                {"name": "peer", "port": PEER_PORT, "targetPort": PEER_PORT, "protocol": "TCP"},
                {"name": "client", "port": CLIENT_PORT, "targetPort": CLIENT_PORT, "protocol": "TCP"},
            ],
        },
    }


def _resources(cluster: EtcdCluster) -> Dict[str, Dict[str, str]]:
    spec = cluster.spec.resources
    return {
        "requests": dict(spec.requests or DEFAULT_RESOURCE_REQUESTS),
        "limits": dict(spec.limits or DEFAULT_RESOURCE_LIMITS),
    }


def _env(cluster: EtcdCluster, domain: str) -> list[Dict[str, Any]]:
    return [
        {"name": "POD_NAME", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
        {"name": "POD_NAMESPACE", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
        {"name": "CLUSTER_NAME", "value": cluster.name},
        {"name": "PEER_SERVICE", "value": peer_service_name(cluster)},
        {"name": "CLUSTER_DOMAIN", "value": domain},
        {"name": "CLIENT_PORT", "value": str(CLIENT_PORT)},
        {"name": "PEER_PORT", "value": str(PEER_PORT)},
        {"name": "DATA_DIR", "value": DATA_DIR},
        {"name": "ETCD_CONFIG_FILE", "value": RUNTIME_CONFIG},
    ]


def _probe(initial_delay: int, period: int, timeout: int) -> Dict[str, Any]:
    return {
        "httpGet": {"path": "/health", "port": CLIENT_PORT},
        "initialDelaySeconds": initial_delay,
        "periodSeconds": period,
        "timeoutSeconds": timeout,
        "failureThreshold": 3,
    }


def build_statefulset(
    cluster: EtcdCluster,
    replicas: int,
    domain: str = DEFAULT_CLUSTER_DOMAIN,
) -> Dict[str, Any]:
    """The workload set running one etcd member per ordinal."""
    labels = standard_labels(cluster)
    annotations = {ANNOTATION_CONFIG_HASH: config_hash(build_config_data(cluster, domain))}

    storage_spec: Dict[str, Any] = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": cluster.spec.storage.size}},
    }
    if cluster.spec.storage.storage_class_name:
        storage_spec["storageClassName"] = cluster.spec.storage.storage_class_name

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": _metadata(cluster, workload_name(cluster), "database"),
        "spec": {
            "replicas": replicas,
            "serviceName": peer_service_name(cluster),
            "podManagementPolicy": "Parallel",
            "updateStrategy": {"type": "RollingUpdate"},
            "selector": {"matchLabels": selector_labels(cluster)},
            "template": {
                "metadata": {"labels": labels, "annotations": annotations},
                "spec": {
                    "initContainers": [
                        {
                            "name": "bootstrap",
                            "image": BOOTSTRAP_IMAGE,
                            "command": ["/bin/sh", f"{CONFIG_DIR}/bootstrap.sh"],
                            "env": _env(cluster, domain),
                            "volumeMounts": [
                                {"name": CONFIG_VOLUME, "mountPath": CONFIG_DIR},
                                {"name": RUNTIME_VOLUME, "mountPath": RUNTIME_DIR},
                            ],
                        }
                    ],
                    "containers": [
                        {
                            "name": CONTAINER_NAME,
                            "image": cluster.spec.image,
                            "command": ["/usr/local/bin/etcd", f"--config-file={RUNTIME_CONFIG}"],
                            "ports": [
                                {"name": "client", "containerPort": CLIENT_PORT, "protocol": "TCP"},
                                {"name": "peer", "containerPort": PEER_PORT, "protocol": "TCP"},
                            ],
                            "env": _env(cluster, domain),
                            "resources": _resources(cluster),
                            "volumeMounts": [
                                {"name": DATA_VOLUME, "mountPath": DATA_DIR},
                                {"name": RUNTIME_VOLUME, "mountPath": RUNTIME_DIR},
                            ],
                            "livenessProbe": _probe(30, 10, 5),
                            "readinessProbe": _probe(10, 5, 3),
                        }
                    ],
                    "volumes": [
                        {
                            "name": CONFIG_VOLUME,
                            "configMap": {"name": config_map_name(cluster), "defaultMode": 0o755},
                        },
                        {"name": RUNTIME_VOLUME, "emptyDir": {}},
                    ],
                },
            },
            "volumeClaimTemplates": [
                {
                    "metadata": {"name": DATA_VOLUME, "labels": selector_labels(cluster)},
                    "spec": storage_spec,
                }
            ],
        },
    }
