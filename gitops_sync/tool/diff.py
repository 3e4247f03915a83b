"""gitops-sync diff action."""

import logging
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import Any, cast

from gitops_sync.cluster import ClusterStateReader
from gitops_sync.manifest import TRACKING_LABEL
from gitops_sync.resource_diff import diff, pending, render_diff
from gitops_sync.source import SourceAdapter

from . import common
from .format import PrintFormatter

_LOGGER = logging.getLogger(__name__)


class DiffAction:
    """Show the changes a sync of an Application would make."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "diff",
                help="Diff the source of an Application against the cluster",
                description=(
                    "Print the difference between the desired objects of an "
                    "Application and the live objects on its cluster"
                ),
            ),
        )
        args.add_argument("name", help="Name of the Application")
        args.add_argument(
            "--output",
            "-o",
            choices=["diff", "plan"],
            default="diff",
            help="Output a unified diff or the list of planned operations",
        )
        args.add_argument(
            "--unified",
            "-u",
            type=int,
            default=3,
            help="output NUM (default 3) lines of unified context",
        )
        common.add_common_flags(args)
        common.add_cluster_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        name: str,
        output: str,
        unified: int,
        context: str | None,
        kubeconfig: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workspace = await common.load_workspace(
            kwargs["apps"], kwargs["config"], kwargs["history"]
        )
        app = workspace.get(name)
        clients = common.cluster_clients(
            workspace.registry,
            context,
            kubeconfig,
            workspace.config.reconciler.sync.timeout_seconds,
        )
        source = SourceAdapter(workspace.config.source)
        try:
            desired = await source.resolve(
                app.source.repo_url,
                app.source.path,
                app.source.target_revision,
                app.destination.namespace,
            )
            reader = ClusterStateReader(clients[app.destination.server])
            live = await reader.list(app.destination, {TRACKING_LABEL: app.name})
        finally:
            if workspace.config.source.cache_dir is None:
                source.cleanup()

        for kind, error in sorted(live.errors.items()):
            _LOGGER.warning("Unable to read %s: %s", kind, error)
        plan = diff(desired, live, app.name, prune=app.sync_policy.prune)
        changes = pending(plan)
        if not changes:
            print(f"Application {name} is in sync at {desired.revision[:12]}")
            return

        if output == "plan":
            rows: list[dict[str, Any]] = [
                {"operation": str(entry.operation), "object": str(entry.identity)}
                for entry in changes
            ]
            PrintFormatter(["operation", "object"]).print(rows)
            return

        for line in render_diff(plan, n=unified):
            print(line, end="" if line.endswith("\n") else "\n")
