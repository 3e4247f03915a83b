"""gitops-sync run action for continuous reconciliation."""

import asyncio
import logging
from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
from typing import cast

from gitops_sync.exceptions import GitOpsException, InputException
from gitops_sync.registry import RegistryEvent, SyncResult, SyncStatus
from gitops_sync.task import task_service_context

from . import common

_LOGGER = logging.getLogger(__name__)


class RunAction:
    """Continuously reconcile every registered Application."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Continuously reconcile every Application",
                description=(
                    "Run the reconciliation loop for every registered Application "
                    "until interrupted"
                ),
            ),
        )
        args.add_argument(
            "--once",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Exit after every Application has been reconciled once",
        )
        common.add_common_flags(args)
        common.add_cluster_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        once: bool,
        context: str | None,
        kubeconfig: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workspace = await common.load_workspace(
            kwargs["apps"], kwargs["config"], kwargs["history"]
        )
        if not workspace.registry.list_applications():
            raise InputException(f"No Applications found in {workspace.apps_path}")

        def on_result(name: str, result: SyncResult) -> None:
            print(f"{name}: {result}", flush=True)

        workspace.registry.add_listener(RegistryEvent.RESULT_ADDED, on_result)
        async with task_service_context(), common.reconciler(
            workspace, context, kubeconfig
        ) as reconciler:
            await reconciler.start()
            try:
                if once:
                    await reconciler.wait_idle()
                else:
                    await asyncio.Event().wait()
            finally:
                await reconciler.stop()
                await workspace.save()

        if once:
            failed = [
                app.name
                for app in workspace.registry.list_applications()
                if (latest := workspace.registry.latest_result(app.name))
                and latest.status == SyncStatus.ERROR
            ]
            if failed:
                raise GitOpsException(f"Applications failed to sync: {failed}")
