"""gitops-sync history action."""

import logging
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import Any, cast

from gitops_sync.registry import Action

from . import common
from .format import OUTPUT_FORMATS, formatter

_LOGGER = logging.getLogger(__name__)


class HistoryAction:
    """Show the sync history of an Application."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "history",
                help="Show the sync history of an Application",
                description="Print the recorded sync results, oldest first",
            ),
        )
        args.add_argument("name", help="Name of the Application")
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
        name: str,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        workspace = await common.load_workspace(
            kwargs["apps"], kwargs["config"], kwargs["history"]
        )
        workspace.get(name)
        results = workspace.registry.history(name)
        if not results:
            print(f"No sync history for Application {name}")
            return
        if output != "table":
            formatter(output).print([result.to_dict() for result in results])
            return
        rows: list[dict[str, Any]] = []
        for result in results:
            rows.append(
                {
                    "timestamp": result.timestamp.isoformat(timespec="seconds"),
                    "revision": result.revision[:12] if result.revision else None,
                    "status": str(result.status),
                    "created": result.count(Action.CREATED),
                    "updated": result.count(Action.UPDATED),
                    "pruned": result.count(Action.PRUNED),
                    "failed": result.count(Action.FAILED),
                    "message": result.message,
                }
            )
        formatter(output).print(rows)
