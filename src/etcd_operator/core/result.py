"""The outcome of one reconciliation pass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ReconcileResult:
    """Tells the caller when to run the next pass.

    ``requeue`` asks for an immediate pass, ``requeue_after`` for one after
    that many seconds. ``error`` marks a failed pass; the caller applies its
    own backoff and ``requeue_after`` becomes the retry delay if set.
    """

    requeue: bool = False
    requeue_after: Optional[float] = None
    error: Optional[BaseException] = None

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls()

    @classmethod
    def now(cls) -> "ReconcileResult":
        return cls(requeue=True)

    @classmethod
    def after(cls, seconds: float) -> "ReconcileResult":
        return cls(requeue_after=seconds)

    @classmethod
    def failed(cls, error: BaseException, retry_after: Optional[float] = None) -> "ReconcileResult":
        return cls(requeue_after=retry_after, error=error)
