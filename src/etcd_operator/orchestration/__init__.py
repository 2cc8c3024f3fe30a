"""Membership scaling and member reachability."""

from etcd_operator.orchestration.reachability import PodAddressProbe, ReachabilityProbe
from etcd_operator.orchestration.scaling import ScalingOrchestrator, StepOutcome, StepReport

__all__ = [
    "PodAddressProbe",
    "ReachabilityProbe",
    "ScalingOrchestrator",
    "StepOutcome",
    "StepReport",
]
