"""Watch loop, work queue and worker pool."""

from etcd_operator.runtime.manager import OperatorManager
from etcd_operator.runtime.workqueue import WorkQueue

__all__ = ["OperatorManager", "WorkQueue"]
