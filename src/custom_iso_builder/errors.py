"""Exceptions raised while building a customized ISO."""
from __future__ import annotations

import shlex
from typing import Sequence


class BuildError(Exception):
    """Base class for failures that abort the build pipeline."""

    exit_code: int = 1


class MissingUtilityError(BuildError):
    def __init__(self, utility: str) -> None:
        self.utility = utility
        super().__init__(f"The utility {utility} is not installed.")


class CommandError(BuildError):
    """An external tool exited with a status the pipeline does not accept."""

    def __init__(self, argv: Sequence[str], returncode: int) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.exit_code = returncode
        super().__init__(f"Command failed with exit code {returncode}: {shlex.join(self.argv)}")


class PackageManagerNotFoundError(BuildError):
    # Same status a shell reports for an undefined install command.
    exit_code = 127

    def __init__(self, root: object) -> None:
        self.root = root
        super().__init__(f"No supported package manager found in {root}")


class PackageFileError(BuildError):
    def __init__(self, path: object, reason: str) -> None:
        self.path = path
        super().__init__(f"Cannot read package file {path}: {reason}")


class DestinationError(BuildError):
    """The copy destination resolves to a location outside the unpacked image."""

    def __init__(self, destination: object, resolved: object) -> None:
        self.destination = destination
        self.resolved = resolved
        super().__init__(f"Destination {destination} resolves outside the image root: {resolved}")
