"""Configuration management for the etcd operator."""

from etcd_operator.config.settings import (
    APISettings,
    EtcdSettings,
    KubernetesSettings,
    LoggingSettings,
    ReconcileSettings,
    Settings,
)

__all__ = [
    "APISettings",
    "EtcdSettings",
    "KubernetesSettings",
    "LoggingSettings",
    "ReconcileSettings",
    "Settings",
]
