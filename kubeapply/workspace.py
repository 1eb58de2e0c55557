"""Temporary working directories for a single apply, diff or delete.

Each invocation gets its own uniquely named directory so that independent
invocations, e.g. against different clusters, never share files.
"""

import logging
import pathlib
import shutil
import tempfile
from types import TracebackType

_LOGGER = logging.getLogger(__name__)

__all__ = ["TemporaryWorkspace"]


class TemporaryWorkspace:
    """A context manager for creating and removing a temporary directory."""

    def __init__(self, prefix: str = "kubeapply_", keep: bool = False) -> None:
        """Initialize TemporaryWorkspace.

        When `keep` is set the directory is left on disk for debugging and its
        path is logged instead.
        """
        self._prefix = prefix
        self._keep = keep
        self.path: pathlib.Path | None = None

    def __enter__(self) -> pathlib.Path:
        """Create the directory and return its path."""
        self.path = pathlib.Path(tempfile.mkdtemp(prefix=self._prefix))
        _LOGGER.debug("Created temporary workspace %s", self.path)
        return self.path

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        """Remove the directory on every exit path unless it should be kept."""
        if self.path is not None:
            if self._keep:
                _LOGGER.info("Keeping temporary configs in %s", self.path)
            else:
                shutil.rmtree(self.path, ignore_errors=True)
        # Propagate any exceptions raised within the block
        return False
