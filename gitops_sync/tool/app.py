"""gitops-sync app action for managing registered Applications."""

import logging
from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
from typing import Any, cast

from gitops_sync.manifest import (
    DEFAULT_REVISION,
    DEFAULT_SERVER,
    Application,
    ApplicationDestination,
    ApplicationSource,
    Automated,
    SyncPolicy,
)
from gitops_sync.registry import Registry

from . import common
from .format import OUTPUT_FORMATS, formatter

_LOGGER = logging.getLogger(__name__)


def _summary(app: Application, registry: Registry) -> dict[str, Any]:
    latest = registry.latest_result(app.name)
    return {
        "name": app.name,
        "repo": app.source.repo_url,
        "path": app.source.path,
        "revision": app.source.target_revision,
        "namespace": app.destination.namespace,
        "server": app.destination.server,
        "policy": str(app.sync_policy.mode),
        "status": str(latest.status) if latest else None,
        "synced": latest.timestamp.isoformat(timespec="seconds") if latest else None,
    }


class AppAddAction:
    """Register a new Application."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "add",
                help="Register an Application",
                description="Register an Application syncing a git path to a namespace",
            ),
        )
        args.add_argument("name", help="Unique name of the Application")
        args.add_argument("--repo", required=True, help="URL or path of the repository")
        args.add_argument(
            "--path", default=".", help="Directory of manifests in the repository"
        )
        args.add_argument(
            "--revision",
            default=DEFAULT_REVISION,
            help="Branch, tag or commit to sync",
        )
        args.add_argument(
            "--dest-namespace", required=True, help="Default destination namespace"
        )
        args.add_argument(
            "--dest-server",
            default=DEFAULT_SERVER,
            help="URL of the destination cluster",
        )
        args.add_argument(
            "--automated",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Apply changes automatically instead of waiting for a sync",
        )
        args.add_argument(
            "--prune",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Delete tracked objects removed from the source (with --automated)",
        )
        args.add_argument(
            "--self-heal",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Revert drift in the live state (with --automated)",
        )
        args.add_argument(
            "--prune-on-delete",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Delete tracked objects when the Application is deleted",
        )
        common.add_common_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        name: str,
        repo: str,
        path: str,
        revision: str,
        dest_namespace: str,
        dest_server: str,
        automated: bool,
        prune: bool,
        self_heal: bool,
        prune_on_delete: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workspace = await common.load_workspace(
            kwargs["apps"], kwargs["config"], kwargs["history"]
        )
        app = Application(
            name=name,
            source=ApplicationSource(
                repo_url=repo, path=path, target_revision=revision
            ),
            destination=ApplicationDestination(
                namespace=dest_namespace, server=dest_server
            ),
            sync_policy=SyncPolicy(
                automated=(
                    Automated(prune=prune, self_heal=self_heal) if automated else None
                ),
                prune_on_delete=prune_on_delete,
            ),
        )
        workspace.registry.add(app)
        await workspace.save()
        print(f"Application {name} added")


class AppListAction:
    """List the registered Applications."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "list",
                aliases=["ls"],
                help="List registered Applications",
                description="Print the registered Applications and their last status",
            ),
        )
        args.add_argument(
            "--output",
            "-o",
            choices=OUTPUT_FORMATS,
            default="table",
            help="Output format of the command",
        )
        common.add_common_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workspace = await common.load_workspace(
            kwargs["apps"], kwargs["config"], kwargs["history"]
        )
        apps = workspace.registry.list_applications()
        if not apps:
            print(f"No Applications found in {workspace.apps_path}")
            return
        cols = ["name", "repo", "path", "revision", "namespace", "policy", "status"]
        formatter(output, cols).print(
            [_summary(app, workspace.registry) for app in apps]
        )


class AppGetAction:
    """Show one Application."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "get",
                help="Show an Application",
                description="Print the definition and last result of an Application",
            ),
        )
        args.add_argument("name", help="Name of the Application")
        args.add_argument(
            "--output",
            "-o",
            choices=["yaml", "json"],
            default="yaml",
            help="Output format of the command",
        )
        common.add_common_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        name: str,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workspace = await common.load_workspace(
            kwargs["apps"], kwargs["config"], kwargs["history"]
        )
        app = workspace.get(name)
        data = app.to_dict()
        if (latest := workspace.registry.latest_result(name)) is not None:
            data["lastResult"] = latest.to_dict()
        formatter(output).print([data])


class AppDeleteAction:
    """Delete an Application."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "delete",
                aliases=["rm"],
                help="Delete an Application",
                description=(
                    "Delete an Application. Its objects are left on the cluster "
                    "unless the Application was added with --prune-on-delete."
                ),
            ),
        )
        args.add_argument("name", help="Name of the Application")
        common.add_common_flags(args)
        common.add_cluster_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        name: str,
        context: str | None,
        kubeconfig: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workspace = await common.load_workspace(
            kwargs["apps"], kwargs["config"], kwargs["history"]
        )
        workspace.get(name)
        async with common.reconciler(workspace, context, kubeconfig) as reconciler:
            result = await reconciler.delete_application(name)
        await workspace.save()
        if result is not None:
            print(f"Application {name} deleted: {result}")
        else:
            print(f"Application {name} deleted")


class AppAction:
    """gitops-sync app action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "app",
                help="Manage registered Applications",
                description="Add, list, show and delete Applications",
            ),
        )
        subcmds = args.add_subparsers(
            title="Available commands",
            required=True,
        )
        AppAddAction.register(subcmds)
        AppListAction.register(subcmds)
        AppGetAction.register(subcmds)
        AppDeleteAction.register(subcmds)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        # No-op given subcommands are always the dispatch target
