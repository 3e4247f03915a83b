"""Resolves an Application source into a DesiredManifestSet.

The adapter is read only. Git repositories are mirrored into a local cache
and fetched again once the freshness window expires, so a branch reference
never resolves to stale content for longer than that window. Objects loaded
for a commit and path are cached since a commit's content never changes.
"""

from dataclasses import dataclass
import hashlib
import json
import logging
from pathlib import Path
from urllib.parse import urlparse

from gitops_sync.context import trace_context
from gitops_sync.exceptions import InputException
from gitops_sync.manifest import DesiredManifestSet, ManagedObject

from . import git
from .cache import GitCache
from .loader import load_manifests

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "SourceAdapter",
    "SourceConfig",
]


@dataclass
class SourceConfig:
    """Configuration for the SourceAdapter."""

    freshness_seconds: float = 60.0
    """Maximum age of a fetched mirror before a branch is resolved again."""

    cache_dir: str | None = None
    """Directory for repository mirrors, a temporary directory if not set."""

    manifest_cache_size: int = 64
    """Number of resolved commit/path object sets kept in memory."""


_CacheKey = tuple[str, str, str, str | None]


def _local_dir(repo_url: str) -> Path | None:
    """Return the directory for a url that is a plain local directory."""
    parsed = urlparse(repo_url)
    if parsed.scheme not in ("", "file"):
        return None
    path = Path(parsed.path if parsed.scheme == "file" else repo_url)
    if path.is_dir() and not (path / ".git").exists() and not (path / "HEAD").exists():
        return path
    return None


def _content_hash(objects: list[ManagedObject]) -> str:
    digest = hashlib.sha256()
    for obj in objects:
        digest.update(json.dumps(obj.doc, sort_keys=True, default=str).encode())
    return digest.hexdigest()


def _subpath(root: Path, path: str) -> Path:
    resolved = (root / path).resolve()
    if not resolved.is_relative_to(root.resolve()):
        raise InputException(f"Source path '{path}' is outside of the repository")
    return resolved


class SourceAdapter:
    """Reads desired manifests from a repository at a path and revision."""

    def __init__(self, config: SourceConfig | None = None) -> None:
        self._config = config or SourceConfig()
        self._git_cache = GitCache(
            Path(self._config.cache_dir) if self._config.cache_dir else None
        )
        self._manifests: dict[_CacheKey, tuple[ManagedObject, ...]] = {}

    async def resolve(
        self,
        repo_url: str,
        path: str,
        revision: str,
        default_namespace: str | None = None,
    ) -> DesiredManifestSet:
        """Resolve the objects at the path of the repository revision.

        Raises:
            SourceUnavailable: If the repository or path can't be read.
            RevisionNotFound: If the revision does not name a commit.
            ConflictingIdentity: If two objects share an identity.
        """
        with trace_context("resolve"):
            if (local := _local_dir(repo_url)) is not None:
                objects = await load_manifests(
                    _subpath(local, path), default_namespace
                )
                return DesiredManifestSet(
                    revision=_content_hash(objects), objects=tuple(objects)
                )

            repo_path, sha = await git.fetch(
                self._git_cache, repo_url, revision, self._config.freshness_seconds
            )
            key = (repo_url, sha, path, default_namespace)
            if (cached := self._manifests.get(key)) is not None:
                _LOGGER.debug("Using cached manifests for %s@%s", repo_url, sha)
                return DesiredManifestSet(revision=sha, objects=cached)

            async with git.checkout(
                self._git_cache, repo_url, repo_path, sha
            ) as worktree:
                objects = await load_manifests(
                    _subpath(worktree, path), default_namespace
                )
            result = DesiredManifestSet(revision=sha, objects=tuple(objects))
            self._remember(key, result.objects)
            _LOGGER.info(
                "Resolved %d objects from %s/%s at %s",
                len(result),
                repo_url,
                path,
                sha[:12],
            )
            return result

    def _remember(self, key: _CacheKey, objects: tuple[ManagedObject, ...]) -> None:
        while len(self._manifests) >= self._config.manifest_cache_size:
            self._manifests.pop(next(iter(self._manifests)))
        self._manifests[key] = objects

    def cleanup(self) -> None:
        """Remove any cached repository mirrors."""
        self._git_cache.cleanup()
        self._manifests.clear()
