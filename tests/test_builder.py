import asyncio
import json
import stat
from pathlib import Path

import pytest

from custom_iso_builder.builder import IsoBuildRunner, render_command_sequence
from custom_iso_builder.cli import build_parser, config_from_args
from custom_iso_builder.config import BuildConfig, PackageSelection

from conftest import FakeCommandRunner


@pytest.fixture
def base_config(tmp_path: Path) -> BuildConfig:
    return BuildConfig(
        workdir=tmp_path / "mk_iso",
        download_path=tmp_path / "ubuntu.iso",
        output=tmp_path / "custom.iso",
    )


def _runner(config: BuildConfig, tmp_path: Path, **fake_options):
    fake = FakeCommandRunner(tmp_path / "fake.log", **fake_options)
    return IsoBuildRunner(config, log_dir=tmp_path / "logs", command_runner=fake), fake


def test_render_command_sequence_downloads_by_default(base_config):
    commands = render_command_sequence(base_config)
    assert any(cmd.startswith("wget -O") for cmd in commands)
    assert any("-b 1048576" in cmd for cmd in commands)
    assert commands[-1].startswith("rm -fr")


def test_render_command_sequence_uses_input_iso(base_config, tmp_path):
    commands = render_command_sequence(base_config.with_updates(input_iso=tmp_path / "in.iso"))
    assert not any(cmd.startswith("wget") for cmd in commands)
    assert any(f"loop,ro {tmp_path / 'in.iso'}" in cmd for cmd in commands)


def test_render_command_sequence_shows_package_install(base_config):
    config = base_config.with_updates(package_selection=PackageSelection.from_options("curl vim"))
    commands = render_command_sequence(config)
    assert any(cmd.endswith("install curl vim") for cmd in commands)
    assert any(cmd.startswith("mount --bind /run") for cmd in commands)


@pytest.mark.asyncio
async def test_runner_simulation_writes_log(base_config, tmp_path):
    runner, fake = _runner(base_config.with_updates(simulate=True), tmp_path)
    lines = []

    result = await runner.run(callback=lines.append)

    assert result.success
    assert result.log_path.exists()
    assert lines
    assert fake.calls == []


@pytest.mark.asyncio
async def test_build_injects_scripts_and_packages(base_config, tmp_path, scripts_dir, tools_installed):
    config = base_config.with_updates(
        input_iso=tmp_path / "in.iso",
        source=scripts_dir,
        package_selection=PackageSelection.from_options("curl vim"),
    )
    runner, fake = _runner(config, tmp_path)

    result = await runner.run(callback=print)

    assert result.success
    assert result.returncode == 0
    assert result.output.read_bytes()
    for name in ("usr/sbin/hello.sh", "usr/sbin/report.sh"):
        assert fake.rootfs_snapshot[name] & stat.S_IXUSR
    squashfs = str(config.workdir / "squashfs")
    assert ["chroot", squashfs, "apt-get", "install", "-y", "curl", "vim"] in fake.calls
    assert "Installing packages: curl vim" in fake.lines
    assert f"Created customized ISO: {config.output}" in fake.lines
    assert not fake.commands_for("wget")
    assert not config.workdir.exists()


@pytest.mark.asyncio
async def test_build_mirrors_iso_tree_without_rootfs(base_config, tmp_path, tools_installed):
    runner, fake = _runner(base_config, tmp_path)
    newfs = base_config.workdir / "newfs"
    seen = {}

    original = fake._fake_mksquashfs

    def capture(argv):
        seen["files"] = sorted(str(p.relative_to(newfs)) for p in newfs.rglob("*") if p.is_file())
        original(argv)

    fake._fake_mksquashfs = capture
    await runner.run(callback=print)

    assert seen["files"] == ["casper/vmlinuz", "isolinux/isolinux.bin"]


@pytest.mark.asyncio
async def test_build_with_package_file_keeps_version_pins(base_config, tmp_path, tools_installed):
    package_file = tmp_path / "pkglist.txt"
    package_file.write_text("foo\nbar=1.2\n")
    config = base_config.with_updates(package_selection=PackageSelection.from_options("", package_file))
    runner, fake = _runner(config, tmp_path)

    result = await runner.run(callback=print)

    assert result.success
    install = [call for call in fake.commands_for("chroot") if "install" in call]
    assert install == [["chroot", str(config.workdir / "squashfs"), "apt-get", "install", "-y", "foo", "bar=1.2"]]


@pytest.mark.asyncio
async def test_build_without_flags_downloads_and_produces_iso(tmp_path, tools_installed):
    config = config_from_args(build_parser().parse_args([])).with_updates(
        workdir=tmp_path / "mk_iso",
        download_path=tmp_path / "ubuntu.iso",
        output=tmp_path / "custom.iso",
    )
    runner, fake = _runner(config, tmp_path)

    result = await runner.run(callback=print)

    assert result.success
    assert fake.commands_for("wget")[0][:3] == ["wget", "-O", str(tmp_path / "ubuntu.iso")]
    assert fake.commands_for("mount")[0][3] == str(tmp_path / "ubuntu.iso")
    assert not fake.commands_for("chroot")
    assert "No packages will be installed." in fake.lines
    assert (tmp_path / "custom.iso").stat().st_size > 0


@pytest.mark.asyncio
async def test_missing_utility_fails_before_any_command(base_config, tmp_path, monkeypatch):
    monkeypatch.setattr(
        "custom_iso_builder.commands.shutil.which",
        lambda name: None if name == "genisoimage" else f"/usr/bin/{name}",
    )
    runner, fake = _runner(base_config, tmp_path)

    result = await runner.run(callback=print)

    assert not result.success
    assert result.returncode == 1
    assert fake.calls == []
    assert any("The utility genisoimage is not installed." in line for line in fake.lines)


@pytest.mark.asyncio
async def test_failing_tool_propagates_status_and_cleans_up(base_config, tmp_path, tools_installed):
    runner, fake = _runner(base_config, tmp_path, failures={"unsquashfs": 3})

    result = await runner.run(callback=print)

    assert not result.success
    assert result.returncode == 3
    assert not fake.commands_for("genisoimage")
    assert not base_config.workdir.exists()


@pytest.mark.asyncio
async def test_unknown_distribution_is_fatal(base_config, tmp_path, tools_installed):
    config = base_config.with_updates(package_selection=PackageSelection.from_options("curl"))
    runner, fake = _runner(config, tmp_path, release_marker=None)

    result = await runner.run(callback=print)

    assert result.returncode == 127
    assert not fake.commands_for("chroot")
    assert not config.workdir.exists()


@pytest.mark.asyncio
async def test_cancelled_build_cleans_up(base_config, tmp_path, tools_installed):
    runner, fake = _runner(base_config, tmp_path, hang_on="unsquashfs")

    task = asyncio.create_task(runner.run(callback=print))
    await asyncio.wait_for(fake.hanging.wait(), timeout=5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert not base_config.workdir.exists()


def test_export_config(base_config, tmp_path):
    config = base_config.with_updates(package_selection=PackageSelection.from_options("curl"))
    runner = IsoBuildRunner(config, log_dir=tmp_path / "logs")
    destination = tmp_path / "config.json"
    runner.export_config(destination)
    data = json.loads(destination.read_text())
    assert data["destination"] == "/usr/sbin"
    assert data["package_selection"]["packages"] == ["curl"]


@pytest.mark.asyncio
async def test_invalid_package_file_fails_the_build(base_config, tmp_path, tools_installed):
    package_file = tmp_path / "pkglist.txt"
    package_file.write_bytes(b"foo\n\xff\xfebar\n")
    config = base_config.with_updates(package_selection=PackageSelection(package_file=package_file))
    runner, fake = _runner(config, tmp_path)

    result = await runner.run(callback=print)

    assert not result.success
    assert result.returncode == 1
    assert not fake.commands_for("chroot")
    assert not config.workdir.exists()


@pytest.mark.asyncio
async def test_missing_tool_during_build_fails_with_127(base_config, tmp_path, tools_installed):
    runner = IsoBuildRunner(
        base_config.with_updates(input_iso=tmp_path / "in.iso"),
        log_dir=tmp_path / "logs",
        command_runner=FakeCommandRunner(tmp_path / "fake.log", failures={"rsync": 127}),
    )

    result = await runner.run(callback=print)

    assert not result.success
    assert result.returncode == 127


def test_render_command_sequence_quotes_copy_destination(base_config, tmp_path):
    source = tmp_path / "my scripts"
    config = base_config.with_updates(source=source, destination="/opt/my tools")
    copy_line = next(cmd for cmd in render_command_sequence(config) if cmd.startswith("mkdir -p") and "find" in cmd)
    copy_to = config.workdir / "squashfs" / "opt" / "my tools"
    assert f"mkdir -p '{copy_to}'" in copy_line
    assert f"find '{source}' -type f" in copy_line
    assert "chmod a+x" in copy_line
    assert copy_line.endswith(f"'{copy_to}' {{}} \\;")
