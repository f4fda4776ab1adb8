"""Library for running the apply command using asyncio and returning the result."""

import asyncio
import contextlib
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)


__all__ = [
    "Command",
    "CommandResult",
]


def format_path(path: Path) -> str:
    """Format path for debugging."""
    if path.is_absolute():
        cwd = Path.cwd()
        if path.is_relative_to(cwd):
            rel_path = str(path.relative_to(cwd))
            return f"{rel_path} (abs)"
    return str(path)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a command that ran to completion."""

    exit_code: int
    """Process exit code."""

    output: str
    """Combined stdout and stderr, prefixed with the command line."""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass
class Command:
    """An instance of a command to run."""

    cmd: list[str]
    """Array of command line arguments."""

    cwd: Path | None = None
    """Current working directory."""

    env: dict[str, str] | None = None
    """Extra environment variables for the subprocess."""

    @property
    def string(self) -> str:
        """Render the command as a single string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    @property
    def header(self) -> str:
        """Header line written before the command output."""
        return f"$ {self.string}\n"

    def __str__(self) -> str:
        """Render as a debug string."""
        cwd: str = ""
        if self.cwd:
            cwd = f"({format_path(self.cwd)}) "
        return f"{cwd}{self.string}"

    async def run(self) -> CommandResult:
        """Run the command until it exits.

        There is no timeout. If the caller is cancelled, the process is killed
        and reaped before the cancellation propagates.

        Raises:
            CommandException: If the process could not be started.
        """
        _LOGGER.debug("Running command: %s", self)
        env = {
            **os.environ,
            **(self.env if self.env else {}),
        }
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=self.cwd,
                env=env,
            )
        except (OSError, ValueError) as err:
            raise CommandException(f"failed to start command: {err}") from err

        try:
            out, _ = await proc.communicate()
        except asyncio.CancelledError:
            _LOGGER.debug("Killing command: %s", self)
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
            await proc.wait()
            raise

        returncode = proc.returncode if proc.returncode is not None else -1
        output = self.header + out.decode("utf-8", errors="replace")
        if returncode:
            _LOGGER.debug("Command '%s' failed with return code %s", self, returncode)
        return CommandResult(exit_code=returncode, output=output)
