"""Errors raised while installing or upgrading."""

from pathlib import Path


class BuildError(Exception):
    """A fatal install, upgrade or build failure."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


class InstallStateError(BuildError):
    """The existing installation could not be understood."""
