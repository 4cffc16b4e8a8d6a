"""Process table queries, signalling and single-instance locks."""

from remotekit.process.lock import LockState, SingleInstanceLock, ensure_exclusive
from remotekit.process.registry import ProcessRegistry
from remotekit.process.signals import SignalEscalator

__all__ = [
    "LockState",
    "ProcessRegistry",
    "SignalEscalator",
    "SingleInstanceLock",
    "ensure_exclusive",
]
