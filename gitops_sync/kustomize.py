"""Library for rendering a kustomize directory into objects.

Directories in a source that contain a `kustomization.yaml` are rendered with
`kustomize build` rather than read file by file:
```python
from gitops_sync import kustomize

objects = await kustomize.build('/path/to/overlay').objects()
for object in objects:
    print(f"Found object {object['apiVersion']} {object['kind']}")
```
"""

from pathlib import Path
from typing import Any

import yaml

from .command import DEFAULT_TIMEOUT, Command
from .exceptions import KustomizeException

__all__ = [
    "build",
    "Kustomize",
    "KUSTOMIZATION_FILES",
]

KUSTOMIZE_BIN = "kustomize"

KUSTOMIZATION_FILES = ("kustomization.yaml", "kustomization.yml", "Kustomization")


class Kustomize:
    """Library for issuing a kustomize command."""

    def __init__(self, cmd: Command) -> None:
        """Initialize Kustomize with the build command to run."""
        self._cmd = cmd

    async def run(self) -> str:
        """Run the kustomize command and return the output as a string."""
        out = await self._cmd.run()
        return out.decode("utf-8")

    async def objects(self) -> list[dict[str, Any]]:
        """Run the kustomize command and return the result cluster objects."""
        out = await self.run()
        return [doc for doc in yaml.safe_load_all(out) if doc is not None]


def is_kustomize_dir(path: Path) -> bool:
    """Return True if the directory is the root of a kustomization."""
    return any((path / name).exists() for name in KUSTOMIZATION_FILES)


def build(path: Path, timeout: float = DEFAULT_TIMEOUT) -> Kustomize:
    """Build cluster artifacts from the specified path."""
    return Kustomize(
        Command(
            [KUSTOMIZE_BIN, "build", "."],
            cwd=path,
            exc=KustomizeException,
            timeout=timeout,
        )
    )
