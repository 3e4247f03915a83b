"""Tests for command library."""

import pytest

from gitops_sync.command import Command, run
from gitops_sync.exceptions import (
    CommandException,
    KustomizeException,
    ReconcileTimeout,
)


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_command_stdin() -> None:
    """Test input is passed to the command."""
    result = await run(Command(["sed", "s/Hello/Goodbye/"]), stdin=b"Hello\n")
    assert result == "Goodbye\n"


async def test_command_env() -> None:
    """Test environment variables are added to the subprocess."""
    cmd = Command(["sh", "-c", "echo $GREETING"], env={"GREETING": "Hi"})
    assert await run(cmd) == "Hi\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_missing_program() -> None:
    """Test a program that does not exist raises the configured exception."""
    cmd = Command(["/nonexistent/kustomize", "build"], exc=KustomizeException)
    with pytest.raises(KustomizeException, match="could not be started"):
        await run(cmd)


async def test_failed_command_exception_type() -> None:
    """Test the configured exception includes the error output."""
    cmd = Command(["sh", "-c", "echo boom >&2; exit 3"], exc=KustomizeException)
    with pytest.raises(KustomizeException, match="boom"):
        await run(cmd)


async def test_command_timeout() -> None:
    """Test a command that runs too long is killed."""
    with pytest.raises(ReconcileTimeout, match="timed out"):
        await run(Command(["sleep", "5"], timeout=0.1))


def test_command_string() -> None:
    """Test rendering a command for debugging."""
    assert str(Command(["echo", "a b"])) == "echo 'a b'"
