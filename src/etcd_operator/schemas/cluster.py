"""EtcdCluster custom resource model."""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from etcd_operator.constants import (
    API_VERSION,
    DEFAULT_CLUSTER_SIZE,
    DEFAULT_ETCD_VERSION,
    DEFAULT_REPOSITORY,
    DEFAULT_STORAGE_SIZE,
    KIND,
    MAX_CLUSTER_SIZE,
)
from etcd_operator.exceptions import ClusterSpecError

VERSION_PATTERN = re.compile(r"^v?3\.[0-9]+\.[0-9]+$")
QUANTITY_PATTERN = re.compile(r"^([0-9]+(?:\.[0-9]+)?)(Ki|Mi|Gi|Ti|Pi|Ei|m|k|M|G|T|P|E)?$")


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClusterPhase(str, Enum):
    """Lifecycle phase recorded in the cluster status."""

    UNINITIALIZED = "Uninitialized"
    CREATING = "Creating"
    RUNNING = "Running"
    SCALING = "Scaling"
    STOPPED = "Stopped"
    FAILED = "Failed"
    DELETING = "Deleting"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ClusterPhase":
        """Read a stored phase; anything unrecognised starts over."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNINITIALIZED


class ObjectMeta(_Model):
    """The subset of object metadata the operator reads or writes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str
    namespace: str = "default"
    uid: str = ""
    generation: int = 0
    resource_version: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[str] = None


class StorageSpec(_Model):
    """Persistent storage for each member."""

    size: str = DEFAULT_STORAGE_SIZE
    storage_class_name: Optional[str] = None

    @field_validator("size", mode="before")
    @classmethod
    def default_size(cls, v: Any) -> Any:
        if v is None or v == "":
            return DEFAULT_STORAGE_SIZE
        return str(v)


class ResourceSpec(_Model):
    """Container resource requests and limits."""

    requests: Dict[str, str] = Field(default_factory=dict)
    limits: Dict[str, str] = Field(default_factory=dict)

    @field_validator("requests", "limits", mode="before")
    @classmethod
    def quantities_as_strings(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {key: str(value) for key, value in v.items()}
        return v


class EtcdClusterSpec(_Model):
    """Desired state of an etcd cluster."""

    size: int = Field(default=DEFAULT_CLUSTER_SIZE, description="Number of voting members")
    version: str = DEFAULT_ETCD_VERSION
    repository: str = DEFAULT_REPOSITORY
    storage: StorageSpec = Field(default_factory=StorageSpec)
    resources: ResourceSpec = Field(default_factory=ResourceSpec)

    @property
    def image(self) -> str:
        tag = self.version if self.version.startswith("v") else f"v{self.version}"
        return f"{self.repository}:{tag}"


class Member(_Model):
    """One etcd member as last observed."""

    name: str
    id: str = ""
    peer_url: str = Field(default="", alias="peerURL")
    client_url: str = Field(default="", alias="clientURL")
    ready: bool = False


class Condition(_Model):
    """A timestamped observation about one aspect of the cluster."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None


class EtcdClusterStatus(_Model):
    """Observed state of an etcd cluster. Written only by the operator."""

    phase: str = ""
    ready_replicas: int = 0
    members: List[Member] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)
    client_endpoints: List[str] = Field(default_factory=list)
    last_update_time: Optional[datetime] = None
    observed_generation: int = 0

    @field_validator("phase", mode="before")
    @classmethod
    def coerce_phase(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    def fingerprint(self) -> Dict[str, Any]:
        """Status content ignoring timestamps, for change detection."""
        data = self.model_dump(mode="json", exclude={"last_update_time"})
        for condition in data["conditions"]:
            condition.pop("last_transition_time", None)
        return data


class EtcdCluster(_Model):
    """An EtcdCluster object: metadata, desired spec and observed status."""

    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: EtcdClusterSpec = Field(default_factory=EtcdClusterSpec)
    status: EtcdClusterStatus = Field(default_factory=EtcdClusterStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def phase(self) -> ClusterPhase:
        return ClusterPhase.parse(self.status.phase)

    @property
    def being_deleted(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @classmethod
    def from_manifest(cls, data: Dict[str, Any]) -> "EtcdCluster":
        return cls.model_validate(data)

    def to_manifest(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_yaml(cls, path: Path) -> "EtcdCluster":
        """Load a cluster manifest from a YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path} does not contain a manifest")
        return cls.from_manifest(data)


def parse_quantity(value: str) -> float:
    """Numeric magnitude of a Kubernetes quantity, without unit scaling."""
    match = QUANTITY_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"invalid quantity {value!r}")
    return float(match.group(1))


def validate_cluster_spec(spec: EtcdClusterSpec) -> None:
    """Raise ClusterSpecError if the spec cannot be acted on."""
    if spec.size < 0 or spec.size > MAX_CLUSTER_SIZE:
        raise ClusterSpecError(
            "InvalidSize",
            f"cluster size {spec.size} must be between 0 and {MAX_CLUSTER_SIZE}",
        )
    if spec.size > 1 and spec.size % 2 == 0:
        raise ClusterSpecError(
            "ParityViolation",
            f"cluster size {spec.size} must be odd to keep a quorum majority",
        )
    if not spec.version:
        raise ClusterSpecError("InvalidVersion", "version must not be empty")
    if not VERSION_PATTERN.match(spec.version):
        raise ClusterSpecError(
            "InvalidVersion",
            f"version {spec.version!r} is not a supported etcd v3 release",
        )
    try:
        magnitude = parse_quantity(spec.storage.size)
    except ValueError as e:
        raise ClusterSpecError("InvalidStorage", f"storage size: {e}") from e
    if magnitude <= 0:
        raise ClusterSpecError("InvalidStorage", "storage size must be greater than zero")
