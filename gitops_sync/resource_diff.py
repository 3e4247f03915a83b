"""Module for computing the delta between desired and live objects.

The diff is field level and asymmetric. Every field present in the desired
object is owned by the Application and is compared against the live object.
Fields that only exist on the live object (allocated ports, generated ids,
defaults filled in by the API server or fields written by other controllers)
are preserved and never produce a patch. Whole objects are only pruned when
prune is enabled and the object carries this Application's tracking label.
"""

from collections.abc import Iterable, Generator
from dataclasses import dataclass, field
import difflib
import hashlib
import json
from enum import StrEnum
import logging
from typing import Any

import yaml

from .manifest import (
    DesiredManifestSet,
    LiveObjectSet,
    ManagedObject,
    ResourceIdentity,
    SERVER_METADATA_FIELDS,
)
from .ordering import sort_key

__all__ = [
    "Operation",
    "PlanEntry",
    "diff",
    "compute_patch",
    "merge_patch",
    "pending",
    "render_diff",
    "fingerprint",
]

_LOGGER = logging.getLogger(__name__)

# Top level fields owned by the cluster rather than the Application
IGNORED_TOP_LEVEL_FIELDS = ("status",)


class Operation(StrEnum):
    """The action needed to bring a live object to its desired state."""

    CREATE = "Create"
    UPDATE = "Update"
    PRUNE = "Prune"
    NOOP = "NoOp"


@dataclass
class PlanEntry:
    """A single step in a sync plan."""

    identity: ResourceIdentity
    operation: Operation
    patch: dict[str, Any] = field(default_factory=dict)
    """JSON merge patch for Update, the full object for Create."""

    desired: ManagedObject | None = None
    live: ManagedObject | None = None

    def __str__(self) -> str:
        return f"{self.operation} {self.identity}"


def _managed_view(doc: dict[str, Any]) -> dict[str, Any]:
    """Return the document without fields the Application does not own."""
    result = {k: v for k, v in doc.items() if k not in IGNORED_TOP_LEVEL_FIELDS}
    if isinstance(metadata := result.get("metadata"), dict):
        result["metadata"] = {
            k: v for k, v in metadata.items() if k not in SERVER_METADATA_FIELDS
        }
    return result


def compute_patch(desired: Any, live: Any) -> dict[str, Any]:
    """Return the minimal merge patch that makes live match the desired fields.

    Nested mappings are compared key by key. Keys missing from the desired
    document are left alone. Lists and scalars are replaced as a whole when
    they differ.
    """
    patch: dict[str, Any] = {}
    for key, value in desired.items():
        if key not in live:
            patch[key] = value
            continue
        live_value = live[key]
        if isinstance(value, dict) and isinstance(live_value, dict):
            if sub_patch := compute_patch(value, live_value):
                patch[key] = sub_patch
        elif value != live_value:
            patch[key] = value
    return patch


def merge_patch(target: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Apply a merge patch produced by `compute_patch` to a copy of target."""
    result = dict(target)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_patch(result[key], value)
        else:
            result[key] = value
    return result


def _diff_object(desired: ManagedObject, live: ManagedObject) -> PlanEntry:
    patch = compute_patch(_managed_view(desired.doc), _managed_view(live.doc))
    if patch:
        return PlanEntry(
            identity=desired.identity,
            operation=Operation.UPDATE,
            patch=patch,
            desired=desired,
            live=live,
        )
    return PlanEntry(
        identity=desired.identity,
        operation=Operation.NOOP,
        desired=desired,
        live=live,
    )


def diff(
    desired: DesiredManifestSet,
    live: LiveObjectSet,
    app_name: str,
    prune: bool = False,
) -> list[PlanEntry]:
    """Compute the ordered sync plan that drives live toward desired.

    The desired objects are compared with the tracking label applied, so an
    untracked live object that otherwise matches is adopted with an Update.
    Live objects whose kind could not be listed are never pruned since their
    absence from the desired set cannot be distinguished from a read failure.
    """
    changes: list[PlanEntry] = []
    noops: list[PlanEntry] = []
    prunes: list[PlanEntry] = []

    for obj in desired:
        tracked = obj.with_tracking(app_name)
        if (live_obj := live.get(obj.identity)) is None:
            if not live.readable(obj.identity):
                _LOGGER.debug("Skipping %s, kind could not be read", obj.identity)
                noops.append(PlanEntry(obj.identity, Operation.NOOP, desired=tracked))
                continue
            changes.append(
                PlanEntry(
                    identity=obj.identity,
                    operation=Operation.CREATE,
                    patch=tracked.doc,
                    desired=tracked,
                )
            )
            continue
        entry = _diff_object(tracked, live_obj)
        if entry.operation == Operation.NOOP:
            noops.append(entry)
        else:
            changes.append(entry)

    desired_ids = {obj.identity for obj in desired}
    for live_obj in live.objects.values():
        if live_obj.identity in desired_ids:
            continue
        if live_obj.tracked_by != app_name:
            continue
        if prune and live.readable(live_obj.identity):
            prunes.append(
                PlanEntry(live_obj.identity, Operation.PRUNE, live=live_obj)
            )
        else:
            noops.append(PlanEntry(live_obj.identity, Operation.NOOP, live=live_obj))

    changes.sort(key=lambda e: sort_key(e.identity))
    prunes.sort(key=lambda e: sort_key(e.identity), reverse=True)
    plan = changes + prunes + noops
    _LOGGER.debug(
        "Plan for %s: %d changes, %d prunes, %d unchanged",
        app_name,
        len(changes),
        len(prunes),
        len(noops),
    )
    return plan


def pending(plan: Iterable[PlanEntry]) -> list[PlanEntry]:
    """Return the entries that require a cluster mutation."""
    return [entry for entry in plan if entry.operation != Operation.NOOP]


def _yaml_lines(doc: dict[str, Any] | None) -> list[str]:
    if doc is None:
        return []
    return yaml.dump(_managed_view(doc), sort_keys=False).splitlines(keepends=True)


def render_diff(plan: Iterable[PlanEntry], n: int = 3) -> Generator[str, None, None]:
    """Generate a unified diff of live and desired YAML for changed entries."""
    for entry in pending(plan):
        live_doc = entry.live.doc if entry.live else None
        if entry.operation == Operation.PRUNE:
            desired_doc = None
        elif entry.operation == Operation.UPDATE and live_doc is not None:
            desired_doc = merge_patch(live_doc, entry.patch)
        else:
            desired_doc = entry.desired.doc if entry.desired else None
        yield from difflib.unified_diff(
            a=_yaml_lines(live_doc),
            b=_yaml_lines(desired_doc),
            fromfile=f"live {entry.identity}",
            tofile=f"desired {entry.identity}",
            n=n,
        )


def fingerprint(live: LiveObjectSet, app_name: str) -> str:
    """Return a digest of the managed fields of objects tracked by the app.

    Server written metadata is excluded, so the digest only changes when an
    actor changes the content of a tracked object or adds or removes one.
    """
    digest = hashlib.sha256()
    for obj in sorted(live.tracked(app_name), key=lambda o: str(o.identity)):
        digest.update(str(obj.identity).encode())
        digest.update(
            json.dumps(_managed_view(obj.doc), sort_keys=True, default=str).encode()
        )
    return digest.hexdigest()
