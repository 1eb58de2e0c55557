"""Exceptions related to kubeapply."""

__all__ = [
    "KubeApplyException",
    "InputException",
    "ManifestReadException",
    "CommandException",
    "KubectlException",
    "DiffException",
]


class KubeApplyException(Exception):
    """Generic base exception used for this library."""


class InputException(KubeApplyException):
    """Raised when the input files or values are not formatted as expected."""


class ManifestReadException(InputException):
    """Raised when a manifest file or directory could not be read."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"Unable to read manifests from {path}: {message}")
        self.path = path


class CommandException(KubeApplyException):
    """Raised when there is a failure running a subcommand.

    The combined output of the command is kept so callers can diagnose
    partially applied changes.
    """

    def __init__(
        self, message: str, output: bytes = b"", returncode: int | None = None
    ) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class KubectlException(CommandException):
    """Raised when there is a failure running a kubectl command."""


class DiffException(KubeApplyException):
    """Raised when structured diff output could not be parsed."""
