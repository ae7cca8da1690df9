"""Repack the root filesystem and author the final ISO."""
from __future__ import annotations

from pathlib import Path
from typing import List

from .commands import CommandRunner
from .config import BuildConfig
from .unpacker import ROOTFS_IMAGE
from .workspace import Workspace

SQUASHFS_BLOCK_SIZE = 1048576
VOLUME_ID = "Custom Image"


def squash_command(workspace: Workspace) -> List[str]:
    return [
        "mksquashfs",
        str(workspace.squashfs),
        str(workspace.newfs / ROOTFS_IMAGE),
        "-b",
        str(SQUASHFS_BLOCK_SIZE),
    ]


def author_command(workspace: Workspace, output: Path) -> List[str]:
    return [
        "genisoimage",
        "-D",
        "-r",
        "-V", VOLUME_ID,
        "-cache-inodes",
        "-J",
        "-l",
        "-b", "isolinux/isolinux.bin",
        "-c", "isolinux/boot.cat",
        "-no-emul-boot",
        "-boot-load-size", "4",
        "-boot-info-table",
        "-input-charset", "utf-8",
        "-o", str(output),
        str(workspace.newfs),
    ]


async def pack_image(config: BuildConfig, workspace: Workspace, runner: CommandRunner) -> Path:
    """Recompress ``squashfs`` into ``newfs`` and write the ISO to ``config.output``."""
    if config.output is None:
        raise ValueError("Output path must be resolved before packing")
    await runner.run(squash_command(workspace))
    await runner.run(author_command(workspace, config.output))
    runner.emit(f"Created customized ISO: {config.output}")
    return config.output
