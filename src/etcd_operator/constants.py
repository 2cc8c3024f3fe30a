"""Well-known names, labels and defaults shared across the operator."""

from __future__ import annotations

GROUP = "etcd.etcd.io"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "EtcdCluster"
PLURAL = "etcdclusters"

FINALIZER = "etcd.etcd.io/finalizer"

DEFAULT_ETCD_VERSION = "v3.5.21"
DEFAULT_REPOSITORY = "quay.io/coreos/etcd"
DEFAULT_CLUSTER_SIZE = 3
DEFAULT_STORAGE_SIZE = "10Gi"
MAX_CLUSTER_SIZE = 9

CLIENT_PORT = 2379
PEER_PORT = 2380
DATA_DIR = "/var/run/etcd"
CONFIG_DIR = "/etc/etcd"
CONTAINER_NAME = "etcd"
DATA_VOLUME = "data"
CONFIG_VOLUME = "config"

DEFAULT_RESOURCE_REQUESTS = {"cpu": "100m", "memory": "128Mi"}
DEFAULT_RESOURCE_LIMITS = {"cpu": "1000m", "memory": "1Gi"}

# Labels
LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_COMPONENT = "app.kubernetes.io/component"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_VERSION = "app.kubernetes.io/version"
LABEL_CLUSTER = "etcd.etcd.io/cluster"

APP_NAME = "etcd"
MANAGER_NAME = "etcd-operator"

ANNOTATION_CONFIG_HASH = "etcd.etcd.io/config-hash"

# Condition types
CONDITION_READY = "Ready"
CONDITION_PROGRESSING = "Progressing"
CONDITION_DEGRADED = "Degraded"
CONDITION_AVAILABLE = "Available"

# Condition reasons
REASON_CREATING = "Creating"
REASON_RUNNING = "Running"
REASON_SCALING = "Scaling"
REASON_FAILED = "Failed"
REASON_DELETING = "Deleting"
REASON_HEALTHY = "Healthy"
REASON_UNHEALTHY = "Unhealthy"
REASON_STOPPED = "Stopped"

# Event reasons
EVENT_CLUSTER_CREATED = "ClusterCreated"
EVENT_CLUSTER_DELETED = "ClusterDeleted"
EVENT_CLUSTER_SCALED = "ClusterScaled"
EVENT_CLUSTER_FAILED = "ClusterFailed"
EVENT_CLUSTER_STOPPED = "ClusterStopped"
EVENT_CLUSTER_RECOVERED = "ClusterRecovered"
EVENT_MEMBER_ADDED = "MemberAdded"
EVENT_MEMBER_REMOVED = "MemberRemoved"

PVC_RETAIN = "Retain"
PVC_DELETE = "Delete"
