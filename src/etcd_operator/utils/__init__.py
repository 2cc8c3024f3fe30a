"""Utility functions for the etcd operator."""

from etcd_operator.utils.logging import setup_logging
from etcd_operator.utils.metrics import OperatorMetrics
from etcd_operator.utils.retry import ItemBackoff, RetryConfig, RetryError, retry_async

__all__ = [
    "setup_logging",
    "OperatorMetrics",
    "ItemBackoff",
    "RetryConfig",
    "RetryError",
    "retry_async",
]
