"""Fixtures for command line tests."""

from dataclasses import dataclass
import pathlib
from typing import Any

import pytest
import yaml

from gitops_sync.cluster import InMemoryCluster
from gitops_sync.tool import common
from gitops_sync.tool.gitops_sync import main


@dataclass
class Cli:
    """Runs the command line tool against files in a working directory."""

    workdir: pathlib.Path

    @property
    def apps(self) -> pathlib.Path:
        return self.workdir / "applications.yaml"

    @property
    def history(self) -> pathlib.Path:
        return self.workdir / "history.yaml"

    @property
    def config(self) -> pathlib.Path:
        return self.workdir / "config.yaml"

    def __call__(self, *args: str) -> None:
        main(
            [
                *args,
                "--apps",
                str(self.apps),
                "--history",
                str(self.history),
                "--config",
                str(self.config),
            ]
        )


@pytest.fixture(name="cluster")
def cli_cluster_fixture(monkeypatch: pytest.MonkeyPatch) -> InMemoryCluster:
    """Replace the kubectl clients of the tool with an in memory cluster."""
    cluster = InMemoryCluster()

    def cluster_clients(*args: Any, **kwargs: Any) -> dict[str, InMemoryCluster]:
        return {cluster.server: cluster}

    monkeypatch.setattr(common, "cluster_clients", cluster_clients)
    return cluster


@pytest.fixture(name="cli")
def cli_fixture(tmp_path: pathlib.Path, cluster: InMemoryCluster) -> Cli:
    """Fixture for running commands with a test configuration."""
    workdir = tmp_path / "workdir"
    workdir.mkdir()
    config = {
        "source": {"freshness_seconds": 0, "cache_dir": str(tmp_path / "cache")},
        "reconciler": {"tick_seconds": 3600, "drift_poll_seconds": 3600},
    }
    cli = Cli(workdir)
    cli.config.write_text(yaml.dump(config))
    return cli
