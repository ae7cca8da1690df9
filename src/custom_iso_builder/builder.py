"""Command generation and execution helpers for customized ISO builds."""
from __future__ import annotations

import asyncio
import json
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from .commands import CommandRunner, require_utilities
from .config import BuildConfig
from .errors import BuildError
from .injector import SANDBOX_BINDS, copy_files, destination_dir, install_packages
from .packer import author_command, pack_image, squash_command
from .unpacker import download_command, mirror_command, mount_command, unpack_image, unsquash_command
from .workspace import Workspace, open_workspace

DEFAULT_LOG_DIR = Path("/tmp/mk_iso-logs")


def render_command_sequence(config: BuildConfig) -> List[str]:
    """Generate the shell commands a build with ``config`` will run."""
    config = config.resolved()
    workspace = Workspace(config.workdir)
    selection = config.package_selection

    commands: List[str] = [
        f"mkdir -p {workspace.mount} {workspace.squashfs} {workspace.newfs}",
    ]
    if config.needs_download:
        commands.append(shlex.join(download_command(config)))
    commands.extend(
        [
            shlex.join(mount_command(config.base_iso, workspace)),
            shlex.join(mirror_command(workspace)),
            shlex.join(unsquash_command(workspace)),
        ]
    )
    if config.source is not None:
        copy_to = destination_dir(config, workspace)
        copy_script = 'cp -f "$1" "$0/" && chmod a+x "$0/${1##*/}"'
        commands.append(
            f"mkdir -p {shlex.quote(str(copy_to))} && "
            f"find {shlex.quote(str(config.source))} -type f "
            f"-exec sh -c {shlex.quote(copy_script)} {shlex.quote(str(copy_to))} {{}} \\;"
        )
    if selection.source != "none":
        if selection.source == "file":
            packages = f"$(cat {shlex.quote(str(selection.package_file))})"
        else:
            packages = " ".join(selection.packages)
        binds = [workspace.squashfs / bind.lstrip("/") for bind in SANDBOX_BINDS]
        commands.extend(f"mount --bind {bind} {target}" for bind, target in zip(SANDBOX_BINDS, binds))
        commands.append(f"chroot {workspace.squashfs} <package-manager> install {packages}")
        commands.extend(f"umount {target}" for target in reversed(binds))
    commands.extend(
        [
            shlex.join(squash_command(workspace)),
            shlex.join(author_command(workspace, config.output)),
            f"umount {workspace.mount}",
            f"rm -fr {workspace.root}",
        ]
    )
    return commands


@dataclass(slots=True)
class BuildResult:
    commands: Sequence[str]
    log_path: Path
    success: bool
    returncode: int = 0
    output: Path | None = None


class IsoBuildRunner:
    """Run the build stages sequentially, optionally simulating them."""

    def __init__(
        self,
        config: BuildConfig,
        *,
        log_dir: Path | None = None,
        command_runner: CommandRunner | None = None,
    ) -> None:
        self.config = config
        self.log_dir = log_dir or DEFAULT_LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.command_runner = command_runner

    async def run(self, *, callback) -> BuildResult:
        log_path = self.log_dir / "build.log"
        config = self.config.resolved()
        commands = render_command_sequence(config)
        if config.simulate:
            await self._simulate(commands, log_path, callback)
            return BuildResult(commands=commands, log_path=log_path, success=True, output=config.output)
        await asyncio.to_thread(log_path.write_text, "")
        runner = self.command_runner or CommandRunner(log_path, callback)
        try:
            require_utilities()
            output = await self._execute(config, runner)
        except BuildError as exc:
            runner.emit(f"Build failed: {exc}")
            return BuildResult(
                commands=commands,
                log_path=log_path,
                success=False,
                returncode=exc.exit_code,
                output=config.output,
            )
        return BuildResult(commands=commands, log_path=log_path, success=True, output=output)

    async def _simulate(self, commands: Sequence[str], log_path: Path, callback) -> None:
        log_path.write_text("Simulated build run.\n")
        for index, command in enumerate(commands, start=1):
            line = f"[{index}/{len(commands)}] {command}"
            with log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(line + "\n")
            callback(line)
            await asyncio.sleep(0.05)

    async def _execute(self, config: BuildConfig, runner: CommandRunner) -> Path:
        async with open_workspace(config.workdir, runner) as workspace:
            await unpack_image(config, workspace, runner)
            copy_files(config, workspace, runner)
            await install_packages(config, workspace, runner)
            return await pack_image(config, workspace, runner)

    def export_config(self, destination: Path) -> Path:
        data = self.config.to_dict()
        destination.write_text(json.dumps(data, indent=2))
        return destination
