"""Materialize the base ISO into the workspace."""
from __future__ import annotations

from pathlib import Path
from typing import List

from .commands import CommandRunner
from .config import BuildConfig
from .workspace import Workspace

ROOTFS_IMAGE = "casper/filesystem.squashfs"
MIRROR_EXCLUDES = [f"/{ROOTFS_IMAGE}", "ubuntu"]
# rsync reports partial transfers with 23/24; the mirror tolerates both.
MIRROR_OK_CODES = (0, 23, 24)


def download_command(config: BuildConfig) -> List[str]:
    return ["wget", "-O", str(config.download_path), config.iso_url]


def mount_command(iso: Path, workspace: Workspace) -> List[str]:
    return ["mount", "-o", "loop,ro", str(iso), str(workspace.mount)]


def mirror_command(workspace: Workspace) -> List[str]:
    excludes = [f"--exclude={pattern}" for pattern in MIRROR_EXCLUDES]
    return ["rsync", "-a", *excludes, f"{workspace.mount}/", str(workspace.newfs)]


def unsquash_command(workspace: Workspace) -> List[str]:
    return ["unsquashfs", "-f", "-d", str(workspace.squashfs), str(workspace.mount / ROOTFS_IMAGE)]


async def unpack_image(config: BuildConfig, workspace: Workspace, runner: CommandRunner) -> Path:
    """Mount the base ISO, mirror its tree into ``newfs`` and unpack the root filesystem.

    Returns the path of the ISO that was used, downloading the default
    release first when no input ISO is configured.
    """
    if config.needs_download:
        runner.emit(f"Downloading {config.iso_url} ...")
        await runner.run(download_command(config))
    iso = config.base_iso
    await runner.run(mount_command(iso, workspace))
    await runner.run(mirror_command(workspace), ok_codes=MIRROR_OK_CODES)
    await runner.run(unsquash_command(workspace))
    return iso
