"""Flags and setup shared by the gitops-sync commands."""

from argparse import ArgumentParser
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
import pathlib
from typing import AsyncGenerator

from gitops_sync.cluster import ClusterClient, KubectlClient
from gitops_sync.config import Config, load_config
from gitops_sync.exceptions import ObjectNotFoundError
from gitops_sync.manifest import Application, read_applications, write_applications
from gitops_sync.reconciler import Reconciler
from gitops_sync.registry import (
    InMemoryRegistry,
    Registry,
    restore_history,
    write_history,
)
from gitops_sync.source import SourceAdapter

_LOGGER = logging.getLogger(__name__)

DEFAULT_APPS_FILE = "applications.yaml"
DEFAULT_HISTORY_FILE = ".gitops-sync-history.yaml"


def add_common_flags(args: ArgumentParser) -> None:
    """Add flags for locating the application and configuration files."""
    args.add_argument(
        "--apps",
        help=f"File holding the registered applications (default {DEFAULT_APPS_FILE})",
        type=pathlib.Path,
        default=pathlib.Path(DEFAULT_APPS_FILE),
    )
    args.add_argument(
        "--config",
        help="Optional configuration file",
        type=pathlib.Path,
        default=None,
    )
    args.add_argument(
        "--history",
        help=f"File holding the sync history (default {DEFAULT_HISTORY_FILE})",
        type=pathlib.Path,
        default=pathlib.Path(DEFAULT_HISTORY_FILE),
    )


def add_cluster_flags(args: ArgumentParser) -> None:
    """Add flags for selecting how kubectl talks to the clusters."""
    args.add_argument(
        "--context",
        help="kubectl context to use for every destination cluster",
        default=None,
    )
    args.add_argument(
        "--kubeconfig",
        help="Path to the kubeconfig file used by kubectl",
        default=None,
    )


@dataclass
class Workspace:
    """The state loaded for running a command."""

    config: Config
    registry: Registry
    apps_path: pathlib.Path
    history_path: pathlib.Path

    def get(self, name: str) -> Application:
        if (app := self.registry.get(name)) is None:
            raise ObjectNotFoundError(
                f"Application {name} not found in {self.apps_path}"
            )
        return app

    async def save(self) -> None:
        await write_applications(self.apps_path, self.registry.list_applications())
        await write_history(self.history_path, self.registry)


async def load_workspace(
    apps: pathlib.Path, config: pathlib.Path | None, history: pathlib.Path
) -> Workspace:
    """Load the configuration, applications and history from disk."""
    loaded = await load_config(config)
    registry = InMemoryRegistry(history_limit=loaded.history_limit)
    if apps.exists():
        for app in await read_applications(apps):
            registry.add(app)
    else:
        _LOGGER.debug("Application file %s does not exist", apps)
    await restore_history(history, registry)
    return Workspace(loaded, registry, apps, history)


def cluster_clients(
    registry: Registry,
    context: str | None,
    kubeconfig: str | None,
    timeout: float,
) -> dict[str, ClusterClient]:
    """Create a kubectl client for each destination server."""
    servers = {app.destination.server for app in registry.list_applications()}
    return {
        server: KubectlClient(
            server, context=context, kubeconfig=kubeconfig, timeout=timeout
        )
        for server in sorted(servers)
    }


@asynccontextmanager
async def reconciler(
    workspace: Workspace,
    context: str | None,
    kubeconfig: str | None,
) -> AsyncGenerator[Reconciler, None]:
    """Create a Reconciler for the workspace, cleaning up the source cache."""
    source = SourceAdapter(workspace.config.source)
    clients = cluster_clients(
        workspace.registry,
        context,
        kubeconfig,
        workspace.config.reconciler.sync.timeout_seconds,
    )
    try:
        yield Reconciler(
            workspace.registry, source, clients, workspace.config.reconciler
        )
    finally:
        for client in clients.values():
            await client.close()
        if workspace.config.source.cache_dir is None:
            source.cleanup()
