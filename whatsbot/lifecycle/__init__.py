"""Connection lifecycle: retries, lock cleanup, readiness and shutdown."""

from whatsbot.lifecycle.deadline import Completed, TimedOut, run_with_deadline
from whatsbot.lifecycle.lock_janitor import LOCK_MARKERS, clean_locks
from whatsbot.lifecycle.manager import (
    ConnectionAttemptError,
    LifecycleManager,
    LifecycleState,
    NotReadyError,
    backoff_delay,
)
from whatsbot.lifecycle.shutdown import ShutdownCoordinator

__all__ = [
    "Completed",
    "TimedOut",
    "run_with_deadline",
    "LOCK_MARKERS",
    "clean_locks",
    "ConnectionAttemptError",
    "LifecycleManager",
    "LifecycleState",
    "NotReadyError",
    "backoff_delay",
    "ShutdownCoordinator",
]
