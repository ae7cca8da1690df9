"""Create a customized bootable Linux ISO disk image.

The following tools must be installed: wget, genisoimage and squashfs-tools
(unsquashfs, mksquashfs). The build mounts images and chroots into the
unpacked filesystem, so it has to run as root.

NOTE: for now this works only with Ubuntu live ISOs.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .builder import IsoBuildRunner
from .config import DEFAULT_DESTINATION, BuildConfig, PackageSelection

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = [signal.SIGHUP, signal.SIGINT, signal.SIGQUIT, signal.SIGALRM, signal.SIGTERM]

EPILOG = """\
If both -p and -f are set, -f takes precedence and -p is ignored.
The default output is /tmp/custom-image-<DATE>.iso, where DATE is in
YYYYMMDDHHmm format, e.g. /tmp/custom-image-202009042003.iso.
"""


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(
        prog="mk-iso",
        description=__doc__,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument(
        "-d",
        dest="destination",
        metavar="PATH",
        default=DEFAULT_DESTINATION,
        help="Destination directory inside the image for copied files, created if missing (default: %(default)s)",
    )
    p.add_argument("-s", dest="source", metavar="PATH", help="Source directory of files copied into the image")
    p.add_argument(
        "-p",
        dest="packages",
        metavar="PACKAGES",
        default="",
        help='Packages to install, quote several: -p "curl vim"',
    )
    p.add_argument(
        "-f",
        dest="package_file",
        metavar="FILE",
        help="File with one package per line; pin a version with package=version",
    )
    p.add_argument(
        "-i",
        dest="input_iso",
        metavar="FILE",
        help="Original ISO to customize (default: download Ubuntu 20.04.1 live server into /tmp)",
    )
    p.add_argument("-o", dest="output", metavar="FILE", help="Output ISO file")
    return p


def config_from_args(args: argparse.Namespace) -> BuildConfig:
    return BuildConfig(
        destination=args.destination,
        source=Path(args.source) if args.source else None,
        package_selection=PackageSelection.from_options(args.packages, args.package_file),
        input_iso=Path(args.input_iso) if args.input_iso else None,
        output=Path(args.output) if args.output else None,
    ).resolved()


async def _run(config: BuildConfig) -> int:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    received: List[int] = []

    def on_signal(signum: int) -> None:
        received.append(signum)
        assert task
        task.cancel()

    for sig in TERMINATION_SIGNALS:
        loop.add_signal_handler(sig, on_signal, sig)

    runner = IsoBuildRunner(config)
    try:
        result = await runner.run(callback=print)
    except asyncio.CancelledError:
        if not received:
            raise
        logger.error("Interrupted by signal %s, workspace cleaned up", received[0])
        return 128 + received[0]
    finally:
        for sig in TERMINATION_SIGNALS:
            loop.remove_signal_handler(sig)
    return result.returncode


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    try:
        config = config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))
    return asyncio.run(_run(config))


if __name__ == "__main__":
    sys.exit(main())
