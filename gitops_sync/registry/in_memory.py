"""Module for an in memory application registry."""

from collections import defaultdict, deque
from collections.abc import Callable
import dataclasses
import logging
from typing import Any, DefaultDict

from gitops_sync.exceptions import InputException, ObjectNotFoundError
from gitops_sync.manifest import Application

from .registry import Registry, RegistryEvent
from .status import ApplicationStatus, SyncResult

_LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


class InMemoryRegistry(Registry):
    """In-memory implementation of the Registry interface.

    Sync history is append only and bounded per Application; the oldest
    results are dropped once the limit is reached.
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._apps: dict[str, Application] = {}
        self._status: dict[str, ApplicationStatus] = {}
        self._history: dict[str, deque[SyncResult]] = {}
        self._history_limit = history_limit
        self._listeners: DefaultDict[RegistryEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )

    def add(self, app: Application) -> None:
        if app.name in self._apps:
            raise InputException(f"Application {app.name} already exists")
        _LOGGER.debug("Adding application %s", app.name)
        self._apps[app.name] = app
        self._status[app.name] = ApplicationStatus()
        self._history[app.name] = deque(maxlen=self._history_limit)
        self._fire_event(RegistryEvent.APP_ADDED, app.name, app)

    def get(self, name: str) -> Application | None:
        return self._apps.get(name)

    def _require(self, name: str) -> Application:
        if (app := self._apps.get(name)) is None:
            raise ObjectNotFoundError(f"Application {name} not found")
        return app

    def list_applications(self) -> list[Application]:
        return [self._apps[name] for name in sorted(self._apps)]

    def update(self, app: Application) -> None:
        existing = self._require(app.name)
        if existing == app:
            return
        self._apps[app.name] = app
        self._fire_event(RegistryEvent.APP_UPDATED, app.name, app)

    def delete(self, name: str) -> Application:
        app = self._require(name)
        _LOGGER.debug("Deleting application %s", name)
        del self._apps[name]
        del self._status[name]
        del self._history[name]
        self._fire_event(RegistryEvent.APP_DELETED, name, app)
        return app

    def get_status(self, name: str) -> ApplicationStatus:
        self._require(name)
        return self._status[name]

    def update_status(self, name: str, **changes: Any) -> ApplicationStatus:
        self._require(name)
        status = dataclasses.replace(self._status[name], **changes)
        self._status[name] = status
        self._fire_event(RegistryEvent.STATUS_UPDATED, name, status)
        return status

    def append_result(self, name: str, result: SyncResult) -> None:
        self._require(name)
        self._history[name].append(result)
        self._fire_event(RegistryEvent.RESULT_ADDED, name, result)

    def history(self, name: str) -> list[SyncResult]:
        self._require(name)
        return list(self._history[name])

    def add_listener(
        self,
        event: RegistryEvent,
        callback: Callable[[str, Any], None],
    ) -> Callable[[], None]:
        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(self, event: RegistryEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):
            try:
                cb(*args)
            except Exception:  # pylint: disable=broad-except
                _LOGGER.exception("Listener failed for event %s", event)
