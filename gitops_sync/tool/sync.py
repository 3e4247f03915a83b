"""gitops-sync sync action."""

import logging
from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
from typing import cast

from gitops_sync.exceptions import GitOpsException
from gitops_sync.registry import SyncResult, SyncStatus

from . import common
from .format import PrintFormatter

_LOGGER = logging.getLogger(__name__)


def print_result(name: str, result: SyncResult) -> None:
    """Print the operations of a sync result followed by a summary."""
    rows = [
        {
            "object": str(op.identity),
            "action": str(op.action),
            "message": op.message,
        }
        for op in result.operations
    ]
    PrintFormatter(["object", "action", "message"]).print(rows)
    print(f"Application {name}: {result}")


class SyncAction:
    """Reconcile an Application once."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "sync",
                help="Reconcile an Application once",
                description=(
                    "Compare an Application against its cluster and apply the "
                    "changes. Manual Applications are only applied with --confirm."
                ),
            ),
        )
        args.add_argument("name", help="Name of the Application")
        args.add_argument(
            "--confirm",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Apply the changes of an Application with a manual sync policy",
        )
        common.add_common_flags(args)
        common.add_cluster_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        name: str,
        confirm: bool,
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
            result = await reconciler.reconcile(name, confirmed=confirm)
        await workspace.save()
        if result is None:
            return
        print_result(name, result)
        if result.status == SyncStatus.ERROR:
            raise GitOpsException(f"Sync of {name} failed")
        if result.status == SyncStatus.OUT_OF_SYNC:
            print("Run again with --confirm to apply the staged changes")
