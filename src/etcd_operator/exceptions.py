"""Error taxonomy for the operator.

Lower layers raise these without making decisions; the scaling orchestrator
and the reconciliation controller decide whether an error becomes a phase
transition or a requeue.
"""

from __future__ import annotations


class OperatorError(Exception):
    """Base class for all operator errors."""


class ClusterSpecError(OperatorError):
    """The desired state is invalid and cannot be acted on."""

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        self.message = message
        super().__init__(f"{reason}: {message}")


class TransientError(OperatorError):
    """A dependency failed in a way that a later pass may not see."""


class PlatformError(TransientError):
    """A Kubernetes API call failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class NotFoundError(PlatformError):
    """The requested object does not exist."""


class AlreadyExistsError(PlatformError):
    """A create lost the race against another writer."""


class ConflictError(PlatformError):
    """An update carried a stale resource version."""


class MembershipError(TransientError):
    """An etcd membership call failed."""


class MembershipTimeoutError(MembershipError):
    """An etcd membership call did not complete in time."""


class MembershipUnavailableError(MembershipError):
    """No etcd endpoint accepted the request."""
