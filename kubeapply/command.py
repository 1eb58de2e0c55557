"""Library for issuing commands using asyncio and returning the result.

All subprocess access in kubeapply goes through a `CommandRunner`. The default
`SubprocessRunner` spawns the process and captures the combined stdout and
stderr; tests substitute a runner that replays canned results.
"""

import asyncio
from abc import ABC, abstractmethod
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
import os

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

_TIMEOUT = 600.0


__all__ = [
    "Command",
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
    "run",
]


def format_path(path: Path) -> str:
    """Format path for debugging."""
    if path.is_absolute():
        cwd = Path.cwd()
        if path.is_relative_to(cwd):
            rel_path = str(path.relative_to(cwd))
            return f"{rel_path} (abs)"
    return str(path)


@dataclass
class Command:
    """An instance of a command to run."""

    cmd: list[str]
    """Array of command line arguments."""

    cwd: Path | None = None
    """Current working directory."""

    exc: type[CommandException] = CommandException
    """Exception to throw in case of an error."""

    retcodes: list[int] | None = None
    """Non-zero error codes that are allowed to indicate success (e.g. for diff)."""

    env: dict[str, str] | None = None
    """Extra environment variables for the subprocess."""

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


@dataclass
class CommandResult:
    """The exit status and combined output of a finished command."""

    command: Command
    returncode: int
    output: bytes = b""

    @property
    def ok(self) -> bool:
        """Return true if the exit status indicates success."""
        if not self.returncode:
            return True
        return bool(self.command.retcodes) and self.returncode in (
            self.command.retcodes or []
        )

    def check(self) -> bytes:
        """Return the output, raising the command exception on failure."""
        if self.ok:
            return self.output
        errors = [
            f"Command '{self.command}' failed with return code {self.returncode}"
        ]
        if self.output:
            errors.append(self.output.decode("utf-8", errors="replace"))
        _LOGGER.debug("\n".join(errors))
        raise self.command.exc(
            "\n".join(errors), output=self.output, returncode=self.returncode
        )


class CommandRunner(ABC):
    """Executes commands on behalf of the library."""

    @abstractmethod
    async def run(self, command: Command) -> CommandResult:
        """Execute the command and return its exit status and output.

        A non-zero exit status is reported in the result, not raised.
        """


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Terminate a child process that is still running."""
    if proc.returncode is None:
        proc.kill()
        await proc.wait()


class SubprocessRunner(CommandRunner):
    """Runs commands as local subprocesses."""

    def __init__(self, timeout: float | None = _TIMEOUT) -> None:
        """Initialize SubprocessRunner."""
        self._timeout = timeout

    async def run(self, command: Command) -> CommandResult:
        """Run the command, capturing stdout and stderr together."""
        _LOGGER.debug("Running command: %s", command)
        env = {
            **os.environ,
            **(command.env if command.env else {}),
        }
        proc = await asyncio.create_subprocess_shell(
            command.string,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=command.cwd,
            env=env,
        )
        try:
            out, _ = await asyncio.wait_for(proc.communicate(), self._timeout)
        except asyncio.TimeoutError as err:
            await _kill(proc)
            raise command.exc(f"Command '{command}' timed out") from err
        except asyncio.CancelledError:
            _LOGGER.debug("Command cancelled, terminating: %s", command)
            await _kill(proc)
            raise
        return CommandResult(command, proc.returncode or 0, out)


async def run(command: Command, runner: CommandRunner | None = None) -> bytes:
    """Run the specified command and return its output, raising on failure."""
    result = await (runner or SubprocessRunner()).run(command)
    return result.check()
