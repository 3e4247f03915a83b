"""Library for running external tools like kubectl and kustomize.

Commands run as subprocesses without a shell, each with its own deadline. A
module wide semaphore bounds how many tools run at once.
"""

import asyncio
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shlex
import subprocess

from .exceptions import CommandException, ReconcileTimeout

_LOGGER = logging.getLogger(__name__)

_CONCURRENCY = 20
_SEM = asyncio.Semaphore(_CONCURRENCY)

DEFAULT_TIMEOUT = 60.0

# Lines of stdout and stderr kept in an error message
_MAX_ERROR_LINES = 20


# No public API
__all__: list[str] = []


def format_path(path: Path) -> str:
    """Format path for debugging."""
    if path.is_absolute():
        cwd = Path.cwd()
        if path.is_relative_to(cwd):
            return f"{path.relative_to(cwd)} (abs)"
    return str(path)


def _tail(stream: bytes) -> list[str]:
    text = stream.decode("utf-8", errors="replace").rstrip()
    return text.splitlines()[-_MAX_ERROR_LINES:]


@dataclass
class Command:
    """An external program to run."""

    cmd: list[str]
    """Array of command line arguments."""

    cwd: Path | None = None
    """Current working directory."""

    exc: type[CommandException] = CommandException
    """Exception to throw when the program exits with an error."""

    env: dict[str, str] | None = None
    """Environment variables added to the subprocess environment."""

    timeout: float = DEFAULT_TIMEOUT
    """Seconds the program may run before it is killed."""

    @property
    def string(self) -> str:
        """Render the command as a single string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    def __str__(self) -> str:
        """Render as a debug string."""
        cwd: str = ""
        if self.cwd:
            cwd = f"({format_path(self.cwd)}) "
        return f"{cwd}{self.string}"

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the command, returning stdout.

        Raises:
            ReconcileTimeout: If the program did not exit before the timeout.
            CommandException: The configured `exc` when the program could not
                be started or the exit code is not 0.
        """
        async with _SEM:
            try:
                async with asyncio.timeout(self.timeout):
                    returncode, out, err = await self._exec(stdin)
            except TimeoutError as error:
                raise ReconcileTimeout(
                    f"Command '{self}' timed out after {self.timeout}s"
                ) from error
        if returncode:
            errors = [f"Command '{self}' failed with return code {returncode}"]
            errors.extend(_tail(out))
            errors.extend(_tail(err))
            _LOGGER.debug("\n".join(errors))
            raise self.exc("\n".join(errors))
        return out

    async def _exec(self, stdin: bytes | None) -> tuple[int, bytes, bytes]:
        _LOGGER.debug("Running command: %s", self)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
                env={**os.environ, **(self.env or {})},
            )
        except OSError as error:
            raise self.exc(f"Command '{self}' could not be started: {error}") from error
        try:
            out, err = await proc.communicate(stdin)
        except asyncio.CancelledError:
            proc.kill()
            raise
        return proc.returncode or 0, out, err


async def run(cmd: Command, stdin: bytes | None = None) -> str:
    """Run the specified command and return stdout as a string."""
    out = await cmd.run(stdin)
    return out.decode("utf-8")
