"""Shared fixtures for gitops-sync tests."""

from collections.abc import Generator
import pathlib

import pytest

from gitops_sync.cluster import InMemoryCluster
from gitops_sync.registry import InMemoryRegistry
from gitops_sync.source import SourceAdapter, SourceConfig

from .common import GitRepoFixture, deployment


@pytest.fixture(name="git_repo")
def git_repo_fixture(tmp_path: pathlib.Path) -> GitRepoFixture:
    """Fixture for a git repository holding a single Deployment."""
    repo = GitRepoFixture(tmp_path / "repo")
    repo.commit({"apps/deployment.yaml": [deployment()]}, message="Initial commit")
    return repo


@pytest.fixture(name="source")
def source_fixture(tmp_path: pathlib.Path) -> Generator[SourceAdapter, None, None]:
    """Fixture for a SourceAdapter that fetches on every resolve."""
    source = SourceAdapter(
        SourceConfig(freshness_seconds=0, cache_dir=str(tmp_path / "cache"))
    )
    yield source
    source.cleanup()


@pytest.fixture(name="cluster")
def cluster_fixture() -> InMemoryCluster:
    return InMemoryCluster()


@pytest.fixture(name="registry")
def registry_fixture() -> InMemoryRegistry:
    return InMemoryRegistry()

