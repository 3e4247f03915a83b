"""Status and sync results recorded for an Application."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from gitops_sync.manifest import BaseManifest, ResourceIdentity


class SyncStatus(StrEnum):
    """Outcome of one reconciliation attempt."""

    SYNCED = "Synced"
    OUT_OF_SYNC = "OutOfSync"
    ERROR = "Error"
    PROGRESSING = "Progressing"


class Phase(StrEnum):
    """Position of an Application in the reconciliation state machine."""

    IDLE = "Idle"
    COMPARING = "Comparing"
    OUT_OF_SYNC = "OutOfSync"
    SYNCING = "Syncing"
    SYNCED = "Synced"
    ERROR = "Error"


class Health(StrEnum):
    """Health of an Application as shown to operators."""

    UNKNOWN = "Unknown"
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"


class Action(StrEnum):
    """What happened to a single object during a sync."""

    CREATED = "created"
    UPDATED = "updated"
    PRUNED = "pruned"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    STAGED = "staged"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OperationResult(BaseManifest):
    """Result of one operation in a sync plan."""

    identity: ResourceIdentity
    action: Action
    message: str | None = None


@dataclass
class SyncResult(BaseManifest):
    """Outcome of one reconciliation attempt."""

    status: SyncStatus
    revision: str | None = None
    """Commit the desired state was resolved from."""

    operations: list[OperationResult] = field(default_factory=list)
    message: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    durations: dict[str, float] = field(default_factory=dict)
    """Seconds spent in each phase of the reconciliation."""

    retryable: bool = True
    """False when the error will not resolve without operator action."""

    def count(self, action: Action) -> int:
        return sum(1 for op in self.operations if op.action == action)

    @property
    def failed(self) -> list[OperationResult]:
        return [op for op in self.operations if op.action == Action.FAILED]

    def __str__(self) -> str:
        text = str(self.status)
        if counts := ", ".join(
            f"{action}={n}" for action in Action if (n := self.count(action))
        ):
            text += f" ({counts})"
        if self.message:
            text += f": {self.message}"
        return text


@dataclass
class ApplicationStatus:
    """Reconciliation status of an Application."""

    phase: Phase = Phase.IDLE
    health: Health = Health.UNKNOWN
    sync_status: SyncStatus | None = None
    revision: str | None = None
    """Revision of the most recent comparison."""

    synced_revision: str | None = None
    """Revision of the most recent fully applied sync."""

    synced_source: str | None = None
    """Source, destination and prune setting of the most recent sync."""

    consecutive_failures: int = 0
    last_error: str | None = None
    last_reconciled: datetime | None = None
    retry_after: datetime | None = None
    """Earliest time of the next attempt after a failure."""
