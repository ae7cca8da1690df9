"""Working directory layout and its guaranteed teardown."""
from __future__ import annotations

import logging
import os
import shutil
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List

from .commands import CommandRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Workspace:
    """Temporary tree holding the mounted ISO, the unpacked root and the new image."""

    root: Path

    @property
    def mount(self) -> Path:
        return self.root / "mount"

    @property
    def squashfs(self) -> Path:
        return self.root / "squashfs"

    @property
    def newfs(self) -> Path:
        return self.root / "newfs"

    @property
    def mount_points(self) -> List[Path]:
        # Innermost first so the bind mount goes before anything above it.
        return [self.squashfs / "run", self.mount]

    def create(self) -> "Workspace":
        for directory in (self.mount, self.squashfs, self.newfs):
            directory.mkdir(parents=True, exist_ok=True)
        return self

    async def cleanup(self, runner: CommandRunner) -> None:
        """Unmount whatever is still mounted and remove the tree.

        Safe to call repeatedly; a missing root is a no-op. Unmount failures
        are logged, and the tree is left in place while anything in it is
        still mounted.
        """
        if not self.root.exists():
            return
        for mount_point in self.mount_points:
            if os.path.ismount(mount_point):
                await runner.run(["umount", mount_point], check=False)
        busy = [str(path) for path in self.mount_points if os.path.ismount(path)]
        if busy:
            logger.error("Not removing %s, still mounted: %s", self.root, ", ".join(busy))
            return
        shutil.rmtree(self.root, ignore_errors=True)
        if self.root.exists():
            logger.warning("Could not fully remove %s", self.root)


@asynccontextmanager
async def open_workspace(root: Path, runner: CommandRunner) -> AsyncIterator[Workspace]:
    """Create the workspace and clean it up on every way out, cancellation included."""
    workspace = Workspace(Path(root)).create()
    try:
        yield workspace
    finally:
        await workspace.cleanup(runner)
