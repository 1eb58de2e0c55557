"""Shared fixtures for kubeapply tests."""

from collections.abc import Callable

import pytest

from kubeapply.command import Command, CommandResult, CommandRunner

Handler = Callable[[Command], CommandResult]


class FakeRunner(CommandRunner):
    """A command runner that records commands and replays canned results.

    Results are consumed in order. Commands run after the queue is empty
    succeed with no output.
    """

    def __init__(self) -> None:
        self.commands: list[Command] = []
        self._handlers: list[Handler] = []

    def add(self, output: bytes | str = b"", returncode: int = 0) -> None:
        """Queue the result of the next command."""
        if isinstance(output, str):
            output = output.encode("utf-8")
        self._handlers.append(
            lambda command: CommandResult(command, returncode, output)
        )

    def add_handler(self, handler: Handler) -> None:
        """Queue a function that produces the result of the next command."""
        self._handlers.append(handler)

    @property
    def args(self) -> list[list[str]]:
        """The arguments of every command run so far."""
        return [command.cmd for command in self.commands]

    async def run(self, command: Command) -> CommandResult:
        self.commands.append(command)
        if not self._handlers:
            return CommandResult(command, 0, b"")
        return self._handlers.pop(0)(command)


@pytest.fixture(name="runner")
def mock_runner() -> FakeRunner:
    """Fixture for a fake command runner."""
    return FakeRunner()
