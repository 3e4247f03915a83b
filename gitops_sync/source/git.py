"""Git repository operations used to resolve manifest sources."""

import asyncio
import contextlib
import logging
from pathlib import Path
import tempfile
from collections.abc import AsyncGenerator

import git

from gitops_sync.exceptions import RevisionNotFound, SourceUnavailable

from .cache import GitCache

_LOGGER = logging.getLogger(__name__)


def _mirror(url: str, repo_path: Path) -> git.Repo:
    """Clone the repository as a mirror, or fetch if it already exists."""
    try:
        if (repo_path / "HEAD").exists():
            _LOGGER.info("Fetching repository %s", url)
            repo = git.Repo(str(repo_path))
            repo.git.fetch("--prune", "--tags", "origin")
            return repo
        _LOGGER.info("Cloning repository %s to %s", url, repo_path)
        return git.Repo.clone_from(url, str(repo_path), mirror=True)
    except git.exc.GitCommandError as e:
        raise SourceUnavailable(f"Unable to fetch {url}: {e}") from e
    except git.exc.GitError as e:
        raise SourceUnavailable(f"Invalid repository {url}: {e}") from e


def _rev_parse(repo: git.Repo, revision: str) -> str:
    """Resolve a branch, tag or commit reference to a commit sha."""
    try:
        return str(repo.git.rev_parse("--verify", "--quiet", f"{revision}^{{commit}}"))
    except git.exc.GitCommandError as e:
        raise RevisionNotFound(f"Revision '{revision}' not found") from e


async def fetch(
    cache: GitCache, url: str, revision: str, freshness_seconds: float
) -> tuple[Path, str]:
    """Return the local mirror of the repository and the resolved commit.

    The mirror is fetched when it is older than the freshness window. A
    commit that is missing from a fresh mirror triggers one more fetch before
    the revision is reported as not found.
    """
    repo_path = cache.get_repo_path(url)
    async with cache.lock(url):
        fetched = False
        if not cache.is_fresh(url, freshness_seconds):
            repo = await asyncio.to_thread(_mirror, url, repo_path)
            cache.mark_fetched(url)
            fetched = True
        else:
            repo = git.Repo(str(repo_path))
        try:
            sha = await asyncio.to_thread(_rev_parse, repo, revision)
        except RevisionNotFound:
            if fetched:
                raise
            repo = await asyncio.to_thread(_mirror, url, repo_path)
            cache.mark_fetched(url)
            sha = await asyncio.to_thread(_rev_parse, repo, revision)
    _LOGGER.debug("Resolved %s@%s to %s", url, revision, sha)
    return repo_path, sha


@contextlib.asynccontextmanager
async def checkout(
    cache: GitCache, url: str, repo_path: Path, sha: str
) -> AsyncGenerator[Path, None]:
    """Create a detached worktree of the commit for reading files.

    Every caller gets its own worktree so concurrent reads of different
    commits of one repository do not interfere.
    """
    repo = git.Repo(str(repo_path))
    with tempfile.TemporaryDirectory(prefix="gitops-sync-") as tmp_dir:
        worktree = Path(tmp_dir) / sha[:12]
        _LOGGER.debug("Creating worktree for %s in %s", sha, worktree)
        async with cache.lock(url):
            try:
                await asyncio.to_thread(
                    repo.git.worktree, "add", "--detach", str(worktree), sha
                )
            except git.exc.GitCommandError as e:
                raise SourceUnavailable(f"Unable to check out {sha}: {e}") from e
        try:
            yield worktree
        finally:
            async with cache.lock(url):
                try:
                    await asyncio.to_thread(
                        repo.git.worktree, "remove", "--force", str(worktree)
                    )
                except git.exc.GitCommandError as e:
                    _LOGGER.warning("Unable to remove worktree %s: %s", worktree, e)
                    await asyncio.to_thread(repo.git.worktree, "prune")
