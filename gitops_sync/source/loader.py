"""Loads manifests from a directory tree.

Every YAML or JSON file below the path is parsed into objects. A directory
holding a `kustomization.yaml` is rendered with kustomize as a single unit
instead of being walked. The result is deduplicated and sorted in dependency
order.
"""

import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from gitops_sync import kustomize
from gitops_sync.exceptions import (
    ConflictingIdentity,
    InputException,
    SourceUnavailable,
)
from gitops_sync.manifest import LIST_KIND, ManagedObject, ResourceIdentity
from gitops_sync.ordering import sort_key

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "load_manifests",
    "dedupe",
]

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


def _flatten(doc: Any) -> list[dict[str, Any]]:
    """Expand `kind: List` documents into their items."""
    if not isinstance(doc, dict):
        return []
    if doc.get("kind") == LIST_KIND and isinstance(items := doc.get("items"), list):
        return [item for item in items if isinstance(item, dict)]
    return [doc]


def _is_object(doc: dict[str, Any]) -> bool:
    return bool(doc.get("apiVersion") and doc.get("kind"))


async def _read_file(path: Path) -> list[dict[str, Any]]:
    try:
        async with aiofiles.open(str(path), encoding="utf-8") as manifest_file:
            content = await manifest_file.read()
    except UnicodeDecodeError as err:
        raise InputException(f"Unable to read {path}: {err}") from err
    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse {path}: {err}") from err
    return [obj for doc in docs for obj in _flatten(doc)]


async def _walk(root: Path, path: Path) -> list[tuple[dict[str, Any], str]]:
    """Return every document below path along with its relative file name."""
    if path.is_dir() and kustomize.is_kustomize_dir(path):
        _LOGGER.debug("Building kustomization in %s", path)
        docs = await kustomize.build(path).objects()
        label = str(path.relative_to(root)) or "."
        return [(obj, label) for doc in docs for obj in _flatten(doc)]
    if path.is_file():
        if path.suffix not in MANIFEST_SUFFIXES:
            return []
        label = str(path.relative_to(root))
        results = []
        for doc in await _read_file(path):
            if not _is_object(doc):
                _LOGGER.debug("Skipping non object document in %s", label)
                continue
            results.append((doc, label))
        return results
    results = []
    for child in sorted(path.iterdir()):
        if child.name.startswith("."):
            continue
        results.extend(await _walk(root, child))
    return results


def dedupe(
    objects: list[tuple[ManagedObject, str]],
) -> list[ManagedObject]:
    """Collapse identical objects and reject differing ones with one identity."""
    seen: dict[ResourceIdentity, tuple[ManagedObject, str]] = {}
    results: list[ManagedObject] = []
    for obj, source in objects:
        if (existing := seen.get(obj.identity)) is None:
            seen[obj.identity] = (obj, source)
            results.append(obj)
            continue
        if existing[0].doc == obj.doc:
            _LOGGER.debug("Ignoring duplicate %s in %s", obj.identity, source)
            continue
        raise ConflictingIdentity(str(obj.identity), [existing[1], source])
    return results


async def load_manifests(
    path: Path, default_namespace: str | None = None
) -> list[ManagedObject]:
    """Load, deduplicate and order the objects below the path.

    Args:
        path: A file or directory of manifests.
        default_namespace: Namespace assigned to namespaced objects that
            do not specify one.

    Raises:
        SourceUnavailable: If the path does not exist.
        InputException: If a file can't be parsed or an object is invalid.
        ConflictingIdentity: If two different objects have the same identity.
    """
    if not path.exists():
        raise SourceUnavailable(f"Manifest path {path} does not exist")
    root = path if path.is_dir() else path.parent
    parsed = [
        (ManagedObject.parse_doc(doc, default_namespace), label)
        for doc, label in await _walk(root, path)
    ]
    objects = dedupe(parsed)
    objects.sort(key=lambda obj: sort_key(obj.identity))
    _LOGGER.debug("Loaded %d objects from %s", len(objects), path)
    return objects
