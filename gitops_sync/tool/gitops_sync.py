"""Command line tool for syncing clusters with manifests in git."""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any

import yaml

from gitops_sync.exceptions import GitOpsException
from . import app, diff, history, run, sync

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for syncing clusters with git.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    app.AppAction.register(subparsers)
    diff.DiffAction.register(subparsers)
    sync.SyncAction.register(subparsers)
    history.HistoryAction.register(subparsers)
    run.RunAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """gitops-sync command line tool main entry point."""

    def str_presenter(dumper: yaml.Dumper, data: Any) -> Any:
        """Represent multi-line yaml strings as you'd expect.

        See https://github.com/yaml/pyyaml/issues/240
        """
        return dumper.represent_scalar(
            "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
        )

    yaml.add_representer(str, str_presenter)

    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except GitOpsException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("gitops-sync error: ", err, file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        _LOGGER.info("Interrupted")


if __name__ == "__main__":
    main()
