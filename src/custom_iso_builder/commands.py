"""Run external tools, streaming their output to a callback and a log file."""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
from pathlib import Path
from typing import Callable, Collection, Iterable, Mapping, Sequence

from .errors import CommandError, MissingUtilityError

logger = logging.getLogger(__name__)

REQUIRED_UTILITIES = ["wget", "rsync", "genisoimage", "unsquashfs", "mksquashfs"]
# Shell statuses for a command that cannot be found or cannot be executed.
NOT_FOUND_STATUS = 127
NOT_EXECUTABLE_STATUS = 126

Callback = Callable[[str], None]


def require_utilities(utilities: Iterable[str] = REQUIRED_UTILITIES) -> None:
    """Raise ``MissingUtilityError`` for the first utility not found on ``PATH``."""
    for utility in utilities:
        if shutil.which(utility) is None:
            raise MissingUtilityError(utility)


class CommandRunner:
    """Execute commands one at a time and record everything they print."""

    def __init__(self, log_path: Path, callback: Callback) -> None:
        self.log_path = Path(log_path)
        self.callback = callback

    def emit(self, line: str) -> None:
        self.callback(line)
        _append_line(self.log_path, line)

    async def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        ok_codes: Collection[int] = (0,),
    ) -> int:
        """Run ``argv`` to completion and return its exit status.

        With ``check`` set, a status outside ``ok_codes`` raises ``CommandError``.
        """
        argv = [str(arg) for arg in argv]
        self.emit(f"$ {shlex.join(argv)}")
        logger.debug("running %s", argv)
        returncode = await self._spawn(argv, env)
        if returncode not in ok_codes:
            if check:
                self.emit(f"Command failed with exit code {returncode}")
                raise CommandError(argv, returncode)
            logger.warning("%s exited with %s", argv[0], returncode)
        return returncode

    async def _spawn(self, argv: Sequence[str], env: Mapping[str, str] | None) -> int:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=dict(os.environ, **(env or {})),
            )
        except FileNotFoundError:
            self.emit(f"{argv[0]}: command not found")
            return NOT_FOUND_STATUS
        except PermissionError:
            self.emit(f"{argv[0]}: permission denied")
            return NOT_EXECUTABLE_STATUS
        assert process.stdout
        try:
            async for line in process.stdout:
                self.emit(line.decode(errors="replace").rstrip())
            return await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.terminate()
                await process.wait()
            raise


def _append_line(path: Path, line: str) -> None:
    with path.open("a", encoding="utf-8") as log_file:
        log_file.write(line + "\n")
