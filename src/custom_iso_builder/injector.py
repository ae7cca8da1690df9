"""Copy extra files and install extra packages into the unpacked root filesystem."""
from __future__ import annotations

import logging
import shutil
import stat
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Sequence

from .commands import CommandRunner
from .config import DEFAULT_DESTINATION, BuildConfig
from .errors import DestinationError, PackageFileError
from .package_managers import detect_package_manager
from .workspace import Workspace

logger = logging.getLogger(__name__)

SANDBOX_BINDS = ["/run"]

EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def destination_dir(config: BuildConfig, workspace: Workspace) -> Path:
    destination = config.destination or DEFAULT_DESTINATION
    return workspace.squashfs / destination.lstrip("/")


def _check_inside_image(config: BuildConfig, workspace: Workspace, copy_to: Path) -> None:
    # Absolute symlinks in the image (var/run -> /run) point at the host.
    resolved = copy_to.resolve()
    if not resolved.is_relative_to(workspace.squashfs.resolve()):
        raise DestinationError(config.destination, resolved)


def copy_files(config: BuildConfig, workspace: Workspace, runner: CommandRunner) -> List[Path]:
    """Copy every regular file below ``config.source`` into the destination directory.

    The copies land side by side in the destination, same-named files are
    overwritten, and each copy is made executable. A missing source directory
    is reported and skipped. A destination that leads out of the image,
    through a symlink in the image, raises ``DestinationError``.
    """
    source = config.source
    if source is None:
        return []
    if not source.is_dir():
        runner.emit(f"Source directory {source} does not exist.")
        logger.warning("Skipping file copy, %s is not a directory", source)
        return []

    copy_to = destination_dir(config, workspace)
    _check_inside_image(config, workspace, copy_to)
    copy_to.mkdir(parents=True, exist_ok=True)
    copied: List[Path] = []
    for path in sorted(source.rglob("*")):
        if not path.is_file() or path.is_symlink():
            continue
        target = copy_to / path.name
        if target.is_symlink():
            target.unlink()
        runner.emit(f"Copying {path} to {copy_to}")
        shutil.copy(path, target)
        target.chmod(target.stat().st_mode | EXECUTABLE_BITS)
        copied.append(target)
    return copied


@asynccontextmanager
async def chroot_sandbox(
    root: Path, runner: CommandRunner, binds: Sequence[str] = SANDBOX_BINDS
) -> AsyncIterator[Path]:
    """Bind host paths into ``root`` for the duration of the block.

    Bound paths are unmounted in reverse order even when the block raises.
    """
    mounted: List[Path] = []
    try:
        for host_path in binds:
            target = root / host_path.lstrip("/")
            target.mkdir(parents=True, exist_ok=True)
            await runner.run(["mount", "--bind", host_path, target])
            mounted.append(target)
        yield root
    finally:
        for target in reversed(mounted):
            await runner.run(["umount", target], check=False)


async def install_packages(config: BuildConfig, workspace: Workspace, runner: CommandRunner) -> List[str]:
    """Install the configured packages with the package manager found in the image.

    Returns the package specifications that were installed.
    """
    selection = config.package_selection
    try:
        packages = selection.load()
    except OSError as exc:
        raise PackageFileError(selection.package_file, exc.strerror or str(exc)) from exc
    except UnicodeDecodeError as exc:
        raise PackageFileError(selection.package_file, f"not valid UTF-8 ({exc.reason})") from exc
    if not packages:
        runner.emit("No packages will be installed.")
        return []

    manager = detect_package_manager(workspace.squashfs)
    logger.info("Using %s to install into %s", manager.name, workspace.squashfs)
    async with chroot_sandbox(workspace.squashfs, runner) as root:
        runner.emit(f"Installing packages: {' '.join(packages)}")
        await manager.install(root, packages, runner)
    return packages
