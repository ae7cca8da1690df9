"""custom_iso_builder package."""

from .config import BuildConfig, PackageSelection
from .builder import BuildResult, IsoBuildRunner, render_command_sequence
from .errors import BuildError, CommandError, MissingUtilityError, PackageManagerNotFoundError

__all__ = [
    "BuildConfig",
    "PackageSelection",
    "BuildResult",
    "IsoBuildRunner",
    "render_command_sequence",
    "BuildError",
    "CommandError",
    "MissingUtilityError",
    "PackageManagerNotFoundError",
]
