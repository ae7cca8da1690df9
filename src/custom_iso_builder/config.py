"""Configuration models for customized ISO builds."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Dict, List, Tuple


DEFAULT_DESTINATION = "/usr/sbin"
DEFAULT_ISO_URL = "https://releases.ubuntu.com/20.04.1/ubuntu-20.04.1-live-server-amd64.iso"
DEFAULT_DOWNLOAD_PATH = Path("/tmp/ubuntu-20.04-server.iso")
DEFAULT_WORKDIR = Path("/tmp/mk_iso")
OUTPUT_TEMPLATE = "/tmp/custom-image-{timestamp}.iso"


def read_package_file(path: Path) -> List[str]:
    """Read a newline separated package list, keeping ``name=version`` pins as written."""
    text = Path(path).read_text(encoding="utf-8")
    return [line.strip() for line in text.splitlines() if line.strip()]


@dataclass(slots=True, frozen=True)
class PackageSelection:
    """Packages to install into the unpacked root filesystem.

    A package file always takes precedence over an explicit list; when both
    are supplied the list is dropped.
    """

    packages: Tuple[str, ...] = ()
    package_file: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "packages", tuple(self.packages))
        if self.package_file is not None:
            object.__setattr__(self, "package_file", Path(self.package_file))
            object.__setattr__(self, "packages", ())

    @classmethod
    def from_options(cls, package_list: str = "", package_file: str | Path | None = None) -> "PackageSelection":
        """Create from the space separated ``-p`` value and the ``-f`` path."""
        packages = tuple(package_list.split()) if package_list else ()
        return cls(packages=packages, package_file=Path(package_file) if package_file else None)

    @property
    def source(self) -> str:
        if self.package_file is not None:
            return "file"
        if self.packages:
            return "list"
        return "none"

    def load(self) -> List[str]:
        """Return the package specifications to hand to the package manager."""
        if self.package_file is not None:
            return read_package_file(self.package_file)
        return list(self.packages)


@dataclass(slots=True, frozen=True)
class BuildConfig:
    """Immutable description of a single customized ISO build."""

    destination: str = DEFAULT_DESTINATION
    source: Path | None = None
    package_selection: PackageSelection = field(default_factory=PackageSelection)
    input_iso: Path | None = None
    output: Path | None = None
    iso_url: str = DEFAULT_ISO_URL
    download_path: Path = DEFAULT_DOWNLOAD_PATH
    workdir: Path = DEFAULT_WORKDIR
    simulate: bool = False

    def __post_init__(self) -> None:
        for name in ("source", "input_iso", "output"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))
        object.__setattr__(self, "download_path", Path(self.download_path))
        object.__setattr__(self, "workdir", Path(self.workdir))
        self.validate()

    def validate(self) -> None:
        """Validate configuration values raising ``ValueError`` when invalid."""
        if ".." in PurePosixPath(self.destination).parts:
            raise ValueError(f"Destination must stay inside the image root: {self.destination}")
        if not self.iso_url:
            raise ValueError("A download URL for the base ISO must be provided")
        if not str(self.workdir) or self.workdir == Path("."):
            raise ValueError("Working directory cannot be empty")

    def resolved(self, now: datetime | None = None) -> "BuildConfig":
        """Return a copy with the destination and output defaults filled in."""
        updates: Dict[str, object] = {}
        if not self.destination:
            updates["destination"] = DEFAULT_DESTINATION
        if self.output is None:
            timestamp = (now or datetime.now()).strftime("%Y%m%d%H%M")
            updates["output"] = Path(OUTPUT_TEMPLATE.format(timestamp=timestamp))
        return self.with_updates(**updates) if updates else self

    @property
    def needs_download(self) -> bool:
        return self.input_iso is None

    @property
    def base_iso(self) -> Path:
        return self.input_iso if self.input_iso is not None else self.download_path

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        for name in ("source", "input_iso", "output", "download_path", "workdir"):
            if data[name] is not None:
                data[name] = str(data[name])
        selection = data["package_selection"]
        selection["packages"] = list(selection["packages"])
        if selection["package_file"] is not None:
            selection["package_file"] = str(selection["package_file"])
        return data

    def with_updates(self, **updates: object) -> "BuildConfig":
        fields = self.to_dict()
        fields.update(updates)
        return BuildConfig.from_dict(fields)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "BuildConfig":
        package_selection = data.get("package_selection", {})
        if isinstance(package_selection, dict):
            data = {**data, "package_selection": PackageSelection(**package_selection)}
        return cls(**data)
