"""Applies a sync plan to a cluster.

Operations run in dependency order. Every cluster call carries a deadline and
a timeout is reported as an error, never as success. An object the cluster
rejects is recorded as failed and the plan continues; any other failure
(unreachable cluster, missing permission, timeout) aborts the rest of the
plan. Completed operations are kept, and since create and update have
server-side apply semantics the next cycle recomputes the remaining work
from fresh state and finds the completed operations unchanged.
"""

import asyncio
from dataclasses import dataclass
import logging

from .cluster import ClusterClient
from .context import trace_context
from .exceptions import (
    ApplyRejected,
    GitOpsException,
    ObjectNotFoundError,
    PartialApplyFailure,
    ReconcileTimeout,
)
from .manifest import TRACKING_LABEL, SyncMode, SyncPolicy
from .ordering import sort_key
from .registry import Action, OperationResult, SyncResult, SyncStatus
from .resource_diff import Operation, PlanEntry

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "SyncConfig",
    "SyncExecutor",
]


@dataclass
class SyncConfig:
    """Configuration for the SyncExecutor."""

    timeout_seconds: float = 30.0
    """Deadline for each individual cluster call."""


def _ordered(plan: list[PlanEntry]) -> tuple[list[PlanEntry], list[PlanEntry]]:
    """Split the plan into mutations in dependency order and no-ops."""
    applies = [e for e in plan if e.operation in (Operation.CREATE, Operation.UPDATE)]
    prunes = [e for e in plan if e.operation == Operation.PRUNE]
    noops = [e for e in plan if e.operation == Operation.NOOP]
    applies.sort(key=lambda e: sort_key(e.identity))
    prunes.sort(key=lambda e: sort_key(e.identity), reverse=True)
    return applies + prunes, noops


class SyncExecutor:
    """Executes sync plans against one cluster."""

    def __init__(self, client: ClusterClient, config: SyncConfig | None = None):
        self._client = client
        self._config = config or SyncConfig()

    async def apply(
        self,
        plan: list[PlanEntry],
        policy: SyncPolicy,
        *,
        confirmed: bool = False,
        revision: str | None = None,
    ) -> SyncResult:
        """Apply the plan and return the result.

        With a manual policy nothing is mutated unless the sync was
        explicitly confirmed; every pending operation is reported as staged.
        """
        if policy.mode == SyncMode.MANUAL and not confirmed:
            return self.stage(plan, revision)

        mutations, noops = _ordered(plan)
        unchanged = [OperationResult(e.identity, Action.UNCHANGED) for e in noops]
        with trace_context("sync"):
            return await self._apply(mutations, unchanged, revision)

    def stage(self, plan: list[PlanEntry], revision: str | None = None) -> SyncResult:
        """Report the plan without mutating the cluster."""
        mutations, noops = _ordered(plan)
        unchanged = [OperationResult(e.identity, Action.UNCHANGED) for e in noops]
        if not mutations:
            return SyncResult(
                SyncStatus.SYNCED, revision=revision, operations=unchanged
            )
        staged = [OperationResult(e.identity, Action.STAGED) for e in mutations]
        return SyncResult(
            SyncStatus.OUT_OF_SYNC,
            revision=revision,
            operations=staged + unchanged,
            message=f"{len(staged)} operations waiting for sync",
        )

    async def _apply(
        self,
        mutations: list[PlanEntry],
        unchanged: list[OperationResult],
        revision: str | None,
    ) -> SyncResult:
        results: list[OperationResult] = []
        failed = 0
        first_error: GitOpsException | None = None
        aborted: GitOpsException | None = None
        for index, entry in enumerate(mutations):
            try:
                action, message = await self._execute(entry)
            except ApplyRejected as err:
                _LOGGER.warning("%s failed: %s", entry, err)
                results.append(OperationResult(entry.identity, Action.FAILED, str(err)))
                failed += 1
                first_error = first_error or err
                continue
            except GitOpsException as err:
                _LOGGER.warning("%s failed, aborting sync: %s", entry, err)
                results.append(OperationResult(entry.identity, Action.FAILED, str(err)))
                failed += 1
                first_error = first_error or err
                aborted = err
                skipped = len(mutations) - index - 1
                if skipped:
                    _LOGGER.info("Skipped %d remaining operations", skipped)
                break
            _LOGGER.debug("%s: %s", entry, action)
            results.append(OperationResult(entry.identity, action, message))

        if first_error is None:
            return SyncResult(
                SyncStatus.SYNCED, revision=revision, operations=results + unchanged
            )
        completed = len(results) - failed
        error = PartialApplyFailure(completed, failed, str(first_error))
        return SyncResult(
            SyncStatus.ERROR,
            revision=revision,
            operations=results + unchanged,
            message=str(error),
            retryable=aborted.retryable if aborted else True,
        )

    async def _execute(self, entry: PlanEntry) -> tuple[Action, str | None]:
        try:
            async with asyncio.timeout(self._config.timeout_seconds):
                return await self._execute_entry(entry)
        except TimeoutError as err:
            raise ReconcileTimeout(
                f"{entry} exceeded the {self._config.timeout_seconds}s deadline"
            ) from err

    async def _execute_entry(self, entry: PlanEntry) -> tuple[Action, str | None]:
        if entry.operation in (Operation.CREATE, Operation.UPDATE):
            if entry.desired is None:
                raise ValueError(f"{entry} has no desired object")
            await self._client.apply(entry.desired.doc)
            if entry.operation == Operation.CREATE:
                return Action.CREATED, None
            return Action.UPDATED, None

        if entry.live is None or (owner := entry.live.tracked_by) is None:
            raise ValueError(f"{entry} is not tracked by an application")
        # Ownership may have changed since the live state was read
        current = await self._client.get(entry.identity)
        if current is None:
            return Action.PRUNED, "already deleted"
        labels = current.get("metadata", {}).get("labels") or {}
        if labels.get(TRACKING_LABEL) != owner:
            _LOGGER.info(
                "Not pruning %s, no longer tracked by %s", entry.identity, owner
            )
            return Action.UNCHANGED, "ownership changed"
        try:
            await self._client.delete(entry.identity)
        except ObjectNotFoundError:
            return Action.PRUNED, "already deleted"
        return Action.PRUNED, None
