"""Application registry interface."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from gitops_sync.manifest import Application

from .status import ApplicationStatus, SyncResult


class RegistryEvent(str, Enum):
    """Enum for registry events."""

    APP_ADDED = "app_added"
    APP_UPDATED = "app_updated"
    APP_DELETED = "app_deleted"
    STATUS_UPDATED = "status_updated"
    RESULT_ADDED = "result_added"


class Registry(ABC):
    """Abstract index of Applications, their status and sync history.

    Listeners receive the Application name and the new value (the
    Application, its ApplicationStatus or the SyncResult) for each event.
    """

    @abstractmethod
    def add(self, app: Application) -> None:
        """Register a new Application, raising InputException if it exists."""

    @abstractmethod
    def get(self, name: str) -> Application | None:
        """Return the Application with the name, if registered."""

    @abstractmethod
    def list_applications(self) -> list[Application]:
        """Return all Applications ordered by name."""

    @abstractmethod
    def update(self, app: Application) -> None:
        """Replace an existing Application definition."""

    @abstractmethod
    def delete(self, name: str) -> Application:
        """Remove the Application, its status and history."""

    @abstractmethod
    def get_status(self, name: str) -> ApplicationStatus:
        """Return the reconciliation status of the Application."""

    @abstractmethod
    def update_status(self, name: str, **changes: Any) -> ApplicationStatus:
        """Update fields of the reconciliation status of the Application."""

    @abstractmethod
    def append_result(self, name: str, result: SyncResult) -> None:
        """Append a SyncResult to the Application's history."""

    @abstractmethod
    def history(self, name: str) -> list[SyncResult]:
        """Return the retained SyncResults, oldest first."""

    def latest_result(self, name: str) -> SyncResult | None:
        """Return the authoritative most recent SyncResult."""
        if results := self.history(name):
            return results[-1]
        return None

    def due(self, interval: timedelta, now: datetime) -> list[str]:
        """Return the names of Applications that should be reconciled now.

        An Application is due when it was never reconciled, when its last
        reconciliation is older than the interval, or when a retry scheduled
        after a failure has come due.
        """
        results = []
        for app in self.list_applications():
            status = self.get_status(app.name)
            if status.retry_after is not None:
                if now >= status.retry_after:
                    results.append(app.name)
                continue
            if status.last_reconciled is None or (
                now - status.last_reconciled >= interval
            ):
                results.append(app.name)
        return results

    @abstractmethod
    def add_listener(
        self,
        event: RegistryEvent,
        callback: Callable[[str, Any], None],
    ) -> Callable[[], None]:
        """Register a callback for an event, returning a function to remove it."""
