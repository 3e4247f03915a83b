"""
The registry module tracks the declared Applications along with the status
of their reconciliation and the history of sync results.

- Keyed by the unique Application name.
- Status and history are written only by the reconciler.
- Provides listeners so the reconciler can start and stop workers as
  Applications are added and deleted.
"""

from .registry import Registry, RegistryEvent
from .in_memory import InMemoryRegistry
from .history import read_history, restore_history, write_history
from .status import (
    Action,
    ApplicationStatus,
    Health,
    OperationResult,
    Phase,
    SyncResult,
    SyncStatus,
)

__all__ = [
    "Registry",
    "RegistryEvent",
    "InMemoryRegistry",
    "Action",
    "ApplicationStatus",
    "Health",
    "OperationResult",
    "Phase",
    "SyncResult",
    "SyncStatus",
    "read_history",
    "restore_history",
    "write_history",
]
