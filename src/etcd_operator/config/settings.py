"""Operator settings using Pydantic."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from etcd_operator.constants import PVC_DELETE, PVC_RETAIN

REACHABILITY_MODES = ("pod", "pod-ip", "dns")

# Sections read flat keys such as REQUEUE_INTERVAL from the environment and .env.
SECTION_CONFIG = SettingsConfigDict(
    populate_by_name=True,
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
)


class LoggingSettings(BaseSettings):
    """Logging configuration."""
    model_config = SECTION_CONFIG

    level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    format: str = Field(default="json", validation_alias="LOG_FORMAT")
    file_path: str = Field(default="", validation_alias="LOG_FILE")


class ReconcileSettings(BaseSettings):
    """Requeue intervals and pass bounds, in seconds."""
    model_config = SECTION_CONFIG

    requeue_interval: float = Field(default=30.0, gt=0, validation_alias="REQUEUE_INTERVAL")
    health_check_interval: float = Field(default=300.0, gt=0, validation_alias="HEALTH_CHECK_INTERVAL")
    stopped_interval: float = Field(default=600.0, gt=0, validation_alias="STOPPED_INTERVAL")
    failed_backoff: float = Field(default=300.0, gt=0, validation_alias="FAILED_BACKOFF")
    deletion_retry_interval: float = Field(default=60.0, gt=0, validation_alias="DELETION_RETRY_INTERVAL")
    reconcile_timeout: float = Field(default=600.0, gt=0, validation_alias="RECONCILE_TIMEOUT")
    workers: int = Field(default=4, ge=1, validation_alias="WORKERS")
    pvc_retention_policy: str = Field(default=PVC_DELETE, validation_alias="PVC_RETENTION_POLICY")

    @field_validator("pvc_retention_policy")
    @classmethod
    def validate_retention(cls, v: str) -> str:
        if v not in (PVC_DELETE, PVC_RETAIN):
            raise ValueError(f"PVC retention policy must be {PVC_DELETE} or {PVC_RETAIN}")
        return v


class EtcdSettings(BaseSettings):
    """etcd membership client configuration."""
    model_config = SECTION_CONFIG

    request_timeout: float = Field(default=10.0, gt=0, validation_alias="ETCD_REQUEST_TIMEOUT")
    health_timeout: float = Field(default=5.0, gt=0, validation_alias="ETCD_HEALTH_TIMEOUT")
    endpoint_override: Optional[str] = Field(default=None, validation_alias="ETCD_ENDPOINT_OVERRIDE")
    reachability_mode: str = Field(default="pod-ip", validation_alias="REACHABILITY_MODE")
    cluster_domain: str = Field(default="cluster.local", validation_alias="CLUSTER_DOMAIN")

    @field_validator("reachability_mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if v not in REACHABILITY_MODES:
            raise ValueError(f"Reachability mode must be one of {', '.join(REACHABILITY_MODES)}")
        return v


class KubernetesSettings(BaseSettings):
    """Kubernetes API access."""
    model_config = SECTION_CONFIG

    namespace: Optional[str] = Field(default=None, validation_alias="WATCH_NAMESPACE")
    api_timeout: float = Field(default=30.0, gt=0, validation_alias="KUBE_API_TIMEOUT")
    kubeconfig: Optional[str] = Field(default=None, validation_alias="KUBECONFIG")


class APISettings(BaseSettings):
    """Health and metrics endpoint configuration."""
    model_config = SECTION_CONFIG

    host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    port: int = Field(default=8080, validation_alias="API_PORT")


class Settings(BaseSettings):
    """Operator settings."""
    debug: bool = Field(default=False, validation_alias="DEBUG")

    # Sub-settings
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    reconcile: ReconcileSettings = Field(default_factory=ReconcileSettings)
    etcd: EtcdSettings = Field(default_factory=EtcdSettings)
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)
    api: APISettings = Field(default_factory=APISettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )
