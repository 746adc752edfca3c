"""Run a declared command line and capture its output."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)


class CommandNotFound(Exception):
    """The executable does not resolve on the search path."""

    def __init__(self, executable: str) -> None:
        super().__init__(f"executable not found: '{executable}'")
        self.executable = executable


@dataclass(frozen=True)
class CommandOutput:
    """Exit status and trimmed output of a finished command."""

    code: int
    stdout: str | None
    stderr: str | None


def _trimmed(text: str) -> str | None:
    text = text.strip()
    return text or None


def split_command(command: str) -> list[str]:
    """Split a command line with shell quoting rules (no shell is involved).

    Raises ``ValueError`` on unbalanced quotes or an empty command.
    """
    argv = shlex.split(command)
    if not argv:
        msg = "empty command"
        raise ValueError(msg)
    return argv


def resolve_executable(name: str, cwd: Path | None = None) -> str | None:
    """Return the full path of *name*, or ``None`` when it cannot be found.

    Names containing a path separator are resolved relative to *cwd*.
    """
    if "/" in name and cwd is not None and not name.startswith("/"):
        return shutil.which(str(cwd / name))
    return shutil.which(name)


def run_command_line(
    command: str,
    *,
    cwd: Path,
    timeout: float,
    env: Mapping[str, str] | None = None,
) -> CommandOutput:
    """Run *command* in *cwd* and return its exit code and trimmed output.

    Raises ``ValueError`` for a malformed command line, :class:`CommandNotFound`
    when the executable is missing, and ``subprocess.TimeoutExpired`` when
    the command outlives *timeout* seconds.
    """
    argv = split_command(command)
    executable = resolve_executable(argv[0], cwd)
    if executable is None:
        raise CommandNotFound(argv[0])

    logger.debug("Running '%s' with args %s in %s", executable, argv[1:], cwd)
    result = subprocess.run(  # noqa: S603
        [executable, *argv[1:]],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        timeout=timeout,
        env=dict(env) if env is not None else None,
        check=False,
    )
    stdout = _trimmed(result.stdout)
    if stdout is not None:
        logger.debug("Stdout:\n%s", stdout)
    stderr = _trimmed(result.stderr)
    if stderr is not None:
        logger.debug("Stderr:\n%s", stderr)
    return CommandOutput(code=result.returncode, stdout=stdout, stderr=stderr)
