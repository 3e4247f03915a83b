"""Cache management for git repositories."""

import asyncio
import hashlib
import tempfile
import logging
import time
from pathlib import Path
from shutil import rmtree

from slugify import slugify
from urllib.parse import urlparse

from gitops_sync.exceptions import SourceUnavailable

_LOGGER = logging.getLogger(__name__)


class GitCache:
    """Cache manager for git repositories.

    Each repository URL is mirrored once into the cache directory. The cache
    remembers when each mirror was last fetched so callers can decide whether
    it is still fresh.
    """

    def __init__(self, cache_dir: Path | None = None) -> None:
        """Initialize the cache manager."""
        self._cache_dir = cache_dir or (
            Path(tempfile.gettempdir()) / "gitops-sync-cache"
        )
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._repos: dict[str, Path] = {}  # Map of URL -> local path
        self._fetched: dict[str, float] = {}  # Map of URL -> monotonic time
        self._locks: dict[str, asyncio.Lock] = {}

    def _slugify_url(self, url: str) -> str:
        """Extract and slugify a repository name from a URL.

        Args:
            url: The URL to extract the repository name from

        Returns:
            str: A slugified version of the repository name
        """
        parsed = urlparse(url)
        path = parsed.path.rstrip("/")
        if path.endswith(".git"):
            path = path[:-4]
        slug = path.split("/")[-1]
        # Handle SSH URLs (git@github.com:user/repo.git)
        if parsed.scheme == "" and "@" in url and ":" in url:
            slug = url.rsplit(":", 1)[1].rstrip("/").split("/")[-1]
            if slug.endswith(".git"):
                slug = slug[:-4]
        return slugify(slug, max_length=50, lowercase=True, separator="-") or "repo"

    def get_repo_path(self, url: str) -> Path:
        """Get the local path for a repository mirror.

        Args:
            url: The URL of the repository

        Returns:
            Path: The local path where the repository should be cached, e.g.
                /gitops-sync-cache/my-repo/ab1234567890abcdef
        """
        if (path := self._repos.get(url)) is not None:
            return path
        hash_str = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        cache_path = self._cache_dir / self._slugify_url(url) / hash_str
        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            _LOGGER.error("Error creating cache directory for %s: %s", url, e)
            raise SourceUnavailable(f"Failed to create cache directory: {e}") from e
        self._repos[url] = cache_path
        return cache_path

    def lock(self, url: str) -> asyncio.Lock:
        """Return the lock guarding the mirror of a repository."""
        if (lock := self._locks.get(url)) is None:
            lock = asyncio.Lock()
            self._locks[url] = lock
        return lock

    def mark_fetched(self, url: str) -> None:
        self._fetched[url] = time.monotonic()

    def is_fresh(self, url: str, freshness_seconds: float) -> bool:
        """Return True if the mirror was fetched within the freshness window."""
        if (fetched := self._fetched.get(url)) is None:
            return False
        return time.monotonic() - fetched < freshness_seconds

    def cleanup(self) -> None:
        """Clean up all cached repositories."""
        for path in self._repos.values():
            if path.exists():
                _LOGGER.info("Cleaning up cached repository: %s", path)
                rmtree(path, ignore_errors=True)
        self._repos.clear()
        self._fetched.clear()
