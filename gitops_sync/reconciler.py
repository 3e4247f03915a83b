"""Reconciliation loop that drives each Application toward its source.

Each Application is reconciled by its own worker task so a failing
Application never blocks the others. A cycle moves the Application through
these phases, each recorded in its `ApplicationStatus`:

    Idle -> Comparing -> (Synced | OutOfSync) -> Syncing -> (Synced | Error) -> Idle

Cycles are started by a periodic ticker, by an explicit request, or by the
drift watcher of a self-healing Application. Within one Application at most
one cycle is in flight. Requests that arrive during a cycle are coalesced
into a single follow-up cycle.

Failures never stop reconciliation. A failed cycle is retried after an
exponential backoff and the Application is marked Degraded after a number of
consecutive failures, or immediately when the error can't be fixed by
retrying (e.g. missing permissions or duplicate objects in the source).
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
import logging
from typing import Any, TypeVar

from .cluster import ClusterClient, ClusterStateReader
from .cluster.client import DEFAULT_PAGE_SIZE
from .context import collect_timings, trace_context
from .exceptions import (
    GitOpsException,
    InputException,
    ObjectNotFoundError,
    ReconcileTimeout,
)
from .manifest import (
    TRACKING_LABEL,
    Application,
    DesiredManifestSet,
    LiveObjectSet,
    SyncMode,
)
from .registry import (
    Health,
    Phase,
    Registry,
    RegistryEvent,
    SyncResult,
    SyncStatus,
)
from .registry.status import utcnow
from .resource_diff import diff, fingerprint, pending
from .source import SourceAdapter
from .sync import SyncConfig, SyncExecutor
from .task import TaskService, get_task_service

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Reconciler",
    "ReconcilerConfig",
    "AppWorker",
    "backoff",
    "sync_key",
]

_T = TypeVar("_T")

TICKER_TASK = "reconciler-ticker"


@dataclass
class ReconcilerConfig:
    """Configuration for the Reconciler."""

    resync_seconds: float = 180.0
    """Interval between reconciliations of an Application."""

    tick_seconds: float = 5.0
    """Interval at which the ticker looks for Applications that are due."""

    backoff_base_seconds: float = 5.0
    backoff_max_seconds: float = 300.0

    degraded_threshold: int = 3
    """Consecutive failures before an Application is marked Degraded."""

    drift_poll_seconds: float = 30.0
    """Interval at which self-healing Applications are checked for drift."""

    debounce_seconds: float = 2.0
    """Time live state must be stable after drift before a cycle is requested."""

    read_timeout_seconds: float = 120.0
    """Deadline for resolving the source and reading the live state."""

    page_size: int = DEFAULT_PAGE_SIZE

    sync: SyncConfig = field(default_factory=SyncConfig)


def sync_key(app: Application, revision: str) -> str:
    """Identify what a sync of the Application at the revision applies."""
    return "|".join(
        [
            app.source.repo_url,
            app.source.path,
            revision,
            app.destination.server,
            app.destination.namespace,
            f"prune={app.sync_policy.prune}",
        ]
    )


def backoff(failures: int, base: float, maximum: float) -> float:
    """Return the delay in seconds before retrying after consecutive failures."""
    if failures < 1:
        return 0.0
    return min(base * 2 ** (failures - 1), maximum)


class AppWorker:
    """Runs reconciliation cycles for a single Application.

    A request made while idle starts a cycle. A request made while a cycle is
    running sets a single pending flag, so any number of requests during a
    cycle result in exactly one more cycle.
    """

    def __init__(self, name: str, cycle: Callable[[bool], Awaitable[Any]]) -> None:
        self.name = name
        self._cycle = cycle
        self._pending = False
        self._confirm = False
        self._running = False
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self.cycles = 0
        """Number of completed cycles."""

    @property
    def busy(self) -> bool:
        return self._running or self._pending

    def request(self, confirm: bool = False) -> None:
        """Request a cycle, confirming a manual sync if `confirm` is set."""
        self._pending = True
        self._confirm = self._confirm or confirm
        self._idle.clear()
        self._wakeup.set()

    async def wait_idle(self) -> None:
        """Wait until no cycle is running or pending."""
        await self._idle.wait()

    def close(self) -> None:
        """Release anyone waiting on a worker that will not run again."""
        self._pending = False
        self._idle.set()

    async def run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            while self._pending:
                self._pending = False
                confirm, self._confirm = self._confirm, False
                self._running = True
                try:
                    await self._cycle(confirm)
                except GitOpsException as err:
                    _LOGGER.error("Reconcile of %s failed: %s", self.name, err)
                except Exception:  # pylint: disable=broad-except
                    _LOGGER.exception("Unexpected error reconciling %s", self.name)
                finally:
                    self._running = False
                self.cycles += 1
            self._idle.set()


class Reconciler:
    """Reconciles every Application in the registry.

    The reconciler is given a cluster client per destination server. A
    single client is used for the destination server it reports.
    """

    def __init__(
        self,
        registry: Registry,
        source: SourceAdapter,
        client: ClusterClient | Mapping[str, ClusterClient],
        config: ReconcilerConfig | None = None,
    ) -> None:
        self._registry = registry
        self._source = source
        if isinstance(client, ClusterClient):
            self._clients: dict[str, ClusterClient] = {client.server: client}
        else:
            self._clients = dict(client)
        self._config = config or ReconcilerConfig()
        self._workers: dict[str, AppWorker] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._fingerprints: dict[str, str] = {}
        self._task_service: TaskService | None = None
        self._unsubscribe: list[Callable[[], None]] = []

    @property
    def running(self) -> bool:
        return self._task_service is not None

    async def start(self) -> None:
        """Start a worker for every registered Application and the ticker."""
        if self._task_service is not None:
            return
        _LOGGER.info("Starting reconciler")
        self._task_service = get_task_service()
        for app in self._registry.list_applications():
            self._start_worker(app.name)
        self._unsubscribe = [
            self._registry.add_listener(RegistryEvent.APP_ADDED, self._on_added),
            self._registry.add_listener(RegistryEvent.APP_UPDATED, self._on_updated),
            self._registry.add_listener(RegistryEvent.APP_DELETED, self._on_deleted),
        ]
        self._task_service.create_background_task(self._tick(), TICKER_TASK)

    async def stop(self) -> None:
        """Stop the ticker and every worker."""
        if (task_service := self._task_service) is None:
            return
        _LOGGER.info("Stopping reconciler")
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        await task_service.cancel_background_task(TICKER_TASK)
        for name in list(self._workers):
            await self._stop_worker(name)
        self._task_service = None

    def request(self, name: str) -> None:
        """Request a reconciliation of the Application."""
        self._worker(name).request()

    def sync(self, name: str) -> None:
        """Request a confirmed sync, required to apply manual Applications."""
        self._worker(name).request(confirm=True)

    async def wait_idle(self, name: str | None = None) -> None:
        """Wait until the named, or every, worker has no cycle to run."""
        names = [name] if name else list(self._workers)
        for worker_name in names:
            if (worker := self._workers.get(worker_name)) is not None:
                await worker.wait_idle()

    def worker(self, name: str) -> AppWorker | None:
        return self._workers.get(name)

    def _worker(self, name: str) -> AppWorker:
        if (worker := self._workers.get(name)) is None:
            raise ObjectNotFoundError(f"No reconciler worker for application {name}")
        return worker

    def _start_worker(self, name: str) -> None:
        if self._task_service is None or name in self._workers:
            return
        _LOGGER.debug("Starting worker for %s", name)
        worker = AppWorker(name, lambda confirm: self.reconcile(name, confirm))
        self._workers[name] = worker
        self._task_service.create_background_task(worker.run(), f"reconcile-{name}")
        self._task_service.create_background_task(
            self._watch_drift(name), f"drift-{name}"
        )
        worker.request()

    async def _stop_worker(self, name: str) -> None:
        if (worker := self._workers.pop(name, None)) is None:
            return
        _LOGGER.debug("Stopping worker for %s", name)
        if self._task_service is not None:
            await self._task_service.cancel_background_task(f"reconcile-{name}")
            await self._task_service.cancel_background_task(f"drift-{name}")
        worker.close()

    def _on_added(self, name: str, _app: Application) -> None:
        self._start_worker(name)

    def _on_updated(self, name: str, _app: Application) -> None:
        if (worker := self._workers.get(name)) is not None:
            worker.request()

    def _on_deleted(self, name: str, _app: Application) -> None:
        if self._task_service is not None and name in self._workers:
            self._task_service.create_task(self._stop_worker(name))

    async def _tick(self) -> None:
        interval = timedelta(seconds=self._config.resync_seconds)
        while True:
            for name in self._registry.due(interval, utcnow()):
                if (worker := self._workers.get(name)) and not worker.busy:
                    _LOGGER.debug("Application %s is due", name)
                    worker.request()
            await asyncio.sleep(self._config.tick_seconds)

    def _lock(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    def _client(self, app: Application) -> ClusterClient:
        if (client := self._clients.get(app.destination.server)) is None:
            raise InputException(
                f"No cluster client for destination {app.destination.server}"
            )
        return client

    async def _deadline(self, coro: Awaitable[_T], what: str) -> _T:
        timeout = self._config.read_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                return await coro
        except TimeoutError as err:
            raise ReconcileTimeout(f"{what} exceeded the {timeout}s deadline") from err

    async def _read_live(self, app: Application) -> LiveObjectSet:
        reader = ClusterStateReader(self._client(app), self._config.page_size)
        with trace_context("read"):
            return await self._deadline(
                reader.list(app.destination, {TRACKING_LABEL: app.name}),
                f"Reading live state of {app.name}",
            )

    async def reconcile(self, name: str, confirmed: bool = False) -> SyncResult | None:
        """Run a single reconciliation cycle and record its result.

        A manual Application is only applied when `confirmed` is set. Returns
        None if the Application no longer exists.
        """
        async with self._lock(name):
            if (app := self._registry.get(name)) is None:
                return None
            _LOGGER.info("Reconciling %s", name)
            with collect_timings() as timings:
                try:
                    result = await self._reconcile(app, confirmed)
                except GitOpsException as err:
                    result = self._failure(name, str(err), err.retryable)
                except Exception as err:  # pylint: disable=broad-except
                    _LOGGER.exception("Unexpected error reconciling %s", name)
                    result = self._failure(name, f"Unexpected error: {err!r}", True)
            result.durations = dict(timings)
            if result.status == SyncStatus.ERROR:
                _LOGGER.error("Application %s sync failed: %s", name, result)
            else:
                _LOGGER.info("Application %s %s", name, result)
            self._registry.append_result(name, result)
            self._record_outcome(app, result)
            return result

    def _failure(self, name: str, message: str, retryable: bool) -> SyncResult:
        return SyncResult(
            SyncStatus.ERROR,
            revision=self._registry.get_status(name).revision,
            message=message,
            retryable=retryable,
        )

    async def _reconcile(self, app: Application, confirmed: bool) -> SyncResult:
        name = app.name
        policy = app.sync_policy
        self._registry.update_status(name, phase=Phase.COMPARING)
        desired: DesiredManifestSet = await self._deadline(
            self._source.resolve(
                app.source.repo_url,
                app.source.path,
                app.source.target_revision,
                app.destination.namespace,
            ),
            f"Resolving source of {name}",
        )
        live = await self._read_live(app)
        with trace_context("diff"):
            plan = diff(desired, live, name, prune=policy.prune)
        self._fingerprints[name] = fingerprint(live, name)

        status = self._registry.update_status(name, revision=desired.revision)
        executor = SyncExecutor(self._client(app), self._config.sync)
        if not pending(plan):
            self._registry.update_status(name, phase=Phase.SYNCED)
            return executor.stage(plan, desired.revision)

        self._registry.update_status(name, phase=Phase.OUT_OF_SYNC)
        automatic = policy.mode == SyncMode.AUTOMATED and (
            policy.self_heal
            or sync_key(app, desired.revision) != status.synced_source
            or status.consecutive_failures > 0
        )
        if not (confirmed or automatic):
            _LOGGER.info("Application %s is out of sync, waiting for sync", name)
            return executor.stage(plan, desired.revision)

        self._registry.update_status(
            name, phase=Phase.SYNCING, sync_status=SyncStatus.PROGRESSING
        )
        result = await executor.apply(
            plan, policy, confirmed=True, revision=desired.revision
        )
        if result.status == SyncStatus.SYNCED:
            self._registry.update_status(name, phase=Phase.SYNCED)
            try:
                live = await self._read_live(app)
            except GitOpsException as err:
                _LOGGER.debug("Unable to read back %s after sync: %s", name, err)
                self._fingerprints.pop(name, None)
            else:
                self._fingerprints[name] = fingerprint(live, name)
        return result

    def _record_outcome(self, app: Application, result: SyncResult) -> None:
        name = app.name
        status = self._registry.get_status(name)
        now = utcnow()
        if result.status != SyncStatus.ERROR:
            changes: dict[str, Any] = {}
            if result.status == SyncStatus.SYNCED:
                changes["synced_revision"] = result.revision
                if result.revision is not None:
                    changes["synced_source"] = sync_key(app, result.revision)
            self._registry.update_status(
                name,
                phase=Phase.IDLE,
                health=Health.HEALTHY,
                sync_status=result.status,
                consecutive_failures=0,
                last_error=None,
                last_reconciled=now,
                retry_after=None,
                **changes,
            )
            return

        failures = status.consecutive_failures + 1
        delay = backoff(
            failures,
            self._config.backoff_base_seconds,
            self._config.backoff_max_seconds,
        )
        health = status.health
        if not result.retryable or failures >= self._config.degraded_threshold:
            health = Health.DEGRADED
        if health == Health.DEGRADED and status.health != Health.DEGRADED:
            _LOGGER.warning(
                "Application %s is degraded after %d failures: %s",
                name,
                failures,
                result.message,
            )
        self._registry.update_status(name, phase=Phase.ERROR)
        self._registry.update_status(
            name,
            phase=Phase.IDLE,
            health=health,
            sync_status=SyncStatus.ERROR,
            consecutive_failures=failures,
            last_error=result.message,
            last_reconciled=now,
            retry_after=now + timedelta(seconds=delay),
        )
        _LOGGER.info("Retrying %s in %.1fs", name, delay)

    async def _watch_drift(self, name: str) -> None:
        """Request a cycle when the live state of a self-healing app drifts."""
        while True:
            await asyncio.sleep(self._config.drift_poll_seconds)
            if (app := self._registry.get(name)) is None:
                return
            worker = self._workers.get(name)
            if not app.sync_policy.self_heal or worker is None or worker.busy:
                continue
            if (expected := self._fingerprints.get(name)) is None:
                continue
            try:
                current = fingerprint(await self._read_live(app), name)
                if current == expected:
                    continue
                _LOGGER.info("Detected drift in %s", name)
                while True:
                    await asyncio.sleep(self._config.debounce_seconds)
                    settled = fingerprint(await self._read_live(app), name)
                    if settled == current:
                        break
                    current = settled
            except GitOpsException as err:
                _LOGGER.debug("Unable to check %s for drift: %s", name, err)
                continue
            worker.request()

    async def delete_application(self, name: str) -> SyncResult | None:
        """Remove the Application, pruning its objects if prune on delete is set.

        Objects tracked by the Application are left in place otherwise. Returns
        the result of the prune, if one was performed.
        """
        async with self._lock(name):
            if (app := self._registry.get(name)) is None:
                raise ObjectNotFoundError(f"Application {name} not found")
            await self._stop_worker(name)
            self._registry.delete(name)
            self._fingerprints.pop(name, None)
            result = None
            if app.sync_policy.prune_on_delete:
                result = await self._prune_all(app)
        self._locks.pop(name, None)
        _LOGGER.info("Deleted application %s", name)
        return result

    async def _prune_all(self, app: Application) -> SyncResult:
        _LOGGER.info("Pruning objects of deleted application %s", app.name)
        live = await self._read_live(app)
        plan = diff(DesiredManifestSet(revision=""), live, app.name, prune=True)
        executor = SyncExecutor(self._client(app), self._config.sync)
        result = await executor.apply(plan, app.sync_policy, confirmed=True)
        _LOGGER.info("Pruned objects of %s: %s", app.name, result)
        return result
