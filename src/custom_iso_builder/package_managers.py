"""Package managers that can install into an unpacked root filesystem."""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from types import MappingProxyType
from typing import Callable, List, Mapping, Sequence, Tuple

from .commands import CommandRunner
from .errors import PackageManagerNotFoundError


class PackageManager(ABC):
    """Install packages by running the manager inside a chroot of ``root``."""

    name: str = ""
    env: Mapping[str, str] = MappingProxyType({})

    @abstractmethod
    def install_commands(self, packages: Sequence[str]) -> List[List[str]]:
        ...

    async def install(self, root: Path, packages: Sequence[str], runner: CommandRunner) -> None:
        for argv in self.install_commands(packages):
            await runner.run(["chroot", str(root), *argv], env=self.env)


class Apt(PackageManager):
    name = "apt"
    env = MappingProxyType({"DEBIAN_FRONTEND": "noninteractive"})

    def install_commands(self, packages: Sequence[str]) -> List[List[str]]:
        return [
            ["apt-get", "update"],
            ["apt-get", "install", "-y", *packages],
        ]


class Dnf(PackageManager):
    name = "dnf"

    def install_commands(self, packages: Sequence[str]) -> List[List[str]]:
        return [["dnf", "install", "-y", *packages]]


class Yum(PackageManager):
    name = "yum"

    def install_commands(self, packages: Sequence[str]) -> List[List[str]]:
        return [["yum", "install", "-y", *packages]]


class Zypper(PackageManager):
    name = "zypper"

    def install_commands(self, packages: Sequence[str]) -> List[List[str]]:
        return [["zypper", "--non-interactive", "install", *packages]]


def _has_file(relative: str) -> Callable[[Path], bool]:
    def probe(root: Path) -> bool:
        return (root / relative).is_file()

    return probe


# Evaluated in order; Fedora also ships redhat-release so dnf is probed first.
PROBES: List[Tuple[Callable[[Path], bool], PackageManager]] = [
    (_has_file("etc/debian_version"), Apt()),
    (_has_file("etc/fedora-release"), Dnf()),
    (_has_file("etc/redhat-release"), Yum()),
    (_has_file("etc/SuSE-release"), Zypper()),
    (_has_file("etc/SUSE-brand"), Zypper()),
]


def detect_package_manager(root: Path) -> PackageManager:
    """Return the first package manager whose marker exists under ``root``."""
    for probe, manager in PROBES:
        if probe(root):
            return manager
    raise PackageManagerNotFoundError(root)
