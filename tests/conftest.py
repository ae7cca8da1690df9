import asyncio
import shutil
from pathlib import Path
from typing import Dict, List

import pytest

from custom_iso_builder.commands import CommandRunner


class FakeCommandRunner(CommandRunner):
    """Records commands instead of running them and fakes their effect on disk."""

    def __init__(self, log_path: Path, *, release_marker="etc/debian_version", failures=None, hang_on=None):
        self.lines: List[str] = []
        super().__init__(log_path, self.lines.append)
        self.calls: List[List[str]] = []
        self.envs: List[Dict[str, str]] = []
        self.release_marker = release_marker
        self.failures = failures or {}
        self.hang_on = hang_on
        self.hanging = asyncio.Event()
        self.rootfs_snapshot: Dict[str, int] = {}

    async def _spawn(self, argv, env):
        self.calls.append(list(argv))
        self.envs.append(dict(env or {}))
        tool = argv[0]
        if tool == self.hang_on:
            self.hanging.set()
            await asyncio.Event().wait()
        if tool in self.failures:
            return self.failures[tool]
        handler = getattr(self, f"_fake_{tool}", None)
        if handler is not None:
            handler(argv)
        return 0

    def commands_for(self, tool: str) -> List[List[str]]:
        return [call for call in self.calls if call[0] == tool]

    def _fake_wget(self, argv):
        Path(argv[2]).write_bytes(b"downloaded iso")

    def _fake_mount(self, argv):
        if "--bind" in argv:
            return
        mount = Path(argv[-1])
        (mount / "isolinux").mkdir(parents=True, exist_ok=True)
        (mount / "isolinux" / "isolinux.bin").write_bytes(b"isolinux")
        (mount / "casper").mkdir(exist_ok=True)
        (mount / "casper" / "filesystem.squashfs").write_bytes(b"rootfs")
        (mount / "casper" / "vmlinuz").write_bytes(b"kernel")
        (mount / "ubuntu").write_text("")

    def _fake_rsync(self, argv):
        source = Path(argv[-2])
        destination = Path(argv[-1])

        def ignore(directory, names):
            ignored = [name for name in names if name == "ubuntu"]
            if Path(directory) == source / "casper":
                ignored += [name for name in names if name == "filesystem.squashfs"]
            return ignored

        shutil.copytree(source, destination, dirs_exist_ok=True, ignore=ignore)

    def _fake_unsquashfs(self, argv):
        root = Path(argv[3])
        (root / "etc").mkdir(parents=True, exist_ok=True)
        (root / "usr" / "sbin").mkdir(parents=True, exist_ok=True)
        if self.release_marker:
            (root / self.release_marker).write_text("bullseye/sid\n")

    def _fake_mksquashfs(self, argv):
        root = Path(argv[1])
        self.rootfs_snapshot = {
            str(path.relative_to(root)): path.stat().st_mode for path in root.rglob("*") if path.is_file()
        }
        Path(argv[2]).write_bytes(b"repacked rootfs")

    def _fake_genisoimage(self, argv):
        output = Path(argv[argv.index("-o") + 1])
        output.write_bytes(b"CD001 custom image")


@pytest.fixture
def fake_runner(tmp_path: Path) -> FakeCommandRunner:
    return FakeCommandRunner(tmp_path / "build.log")


@pytest.fixture
def tools_installed(monkeypatch):
    monkeypatch.setattr("custom_iso_builder.commands.shutil.which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def scripts_dir(tmp_path: Path) -> Path:
    scripts = tmp_path / "scripts"
    (scripts / "nested").mkdir(parents=True)
    (scripts / "hello.sh").write_text("#!/bin/sh\necho hello\n")
    (scripts / "nested" / "report.sh").write_text("#!/bin/sh\nuptime\n")
    (scripts / "hello.sh").chmod(0o644)
    (scripts / "nested" / "report.sh").chmod(0o600)
    return scripts
