"""Persistence of sync history between command line invocations."""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import cast

import aiofiles

from gitops_sync.exceptions import InputException
from gitops_sync.manifest import BaseManifest

from .registry import Registry
from .status import SyncResult

__all__ = [
    "read_history",
    "restore_history",
    "write_history",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class HistoryFile(BaseManifest):
    """Sync results keyed by Application name, oldest first."""

    applications: dict[str, list[SyncResult]] = field(default_factory=dict)


async def read_history(path: Path) -> dict[str, list[SyncResult]]:
    """Return the sync history stored in the file, empty if it does not exist."""
    if not path.exists():
        return {}
    async with aiofiles.open(str(path)) as history_file:
        content = await history_file.read()
    if not content.strip():
        return {}
    try:
        return cast(HistoryFile, HistoryFile.parse_yaml(content)).applications
    except (ValueError, TypeError, LookupError) as err:
        raise InputException(f"Invalid history file {path}: {err}") from err


async def restore_history(path: Path, registry: Registry) -> None:
    """Append stored results for every registered Application."""
    for name, results in (await read_history(path)).items():
        if registry.get(name) is None:
            _LOGGER.debug("Ignoring history of unknown application %s", name)
            continue
        for result in results:
            registry.append_result(name, result)


async def write_history(path: Path, registry: Registry) -> None:
    """Write the retained history of every registered Application."""
    content = HistoryFile(
        applications={
            app.name: registry.history(app.name)
            for app in registry.list_applications()
        }
    ).yaml()
    async with aiofiles.open(str(path), mode="w") as history_file:
        await history_file.write(content)
