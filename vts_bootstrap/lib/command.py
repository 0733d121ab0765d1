from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# NixOS keeps its profile binaries outside the usual FHS locations.
SEARCH_PATHS = (
    "/run/current-system/sw/bin",
    "/usr/bin",
    "/bin",
    "/usr/local/bin",
    "/sbin",
    "/usr/sbin",
)

# Exit codes used when the process never produced one.
NOT_FOUND = 127
TIMED_OUT = 124


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandError(RuntimeError):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {quote_argv(self.argv)}\n{stderr}")


def quote_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def _log_output(stdout: str, stderr: str) -> None:
    for tag, text in (("STDOUT", stdout), ("STDERR", stderr)):
        if text:
            logger.debug("%s %s", tag, text.strip())


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    dry_run: bool = False,
    secret_input: bool = False,
    timeout: float | None = None,
) -> CmdResult:
    """Run a command and return its captured output.

    Every command is logged as ``CMD ...`` at INFO; output goes to DEBUG.
    A dry run logs and returns success without executing. ``secret_input``
    keeps stdin (passwords for chpasswd/mkpasswd) out of the log. A missing
    executable is exit code 127 and a timeout 124; with ``check`` any
    non-zero code raises CommandError.
    """

    cmd = list(argv)
    logger.info("CMD %s", quote_argv(cmd))
    if input_text is not None and not secret_input:
        logger.debug("STDIN %s", input_text.strip())
    if dry_run:
        return CmdResult(argv=cmd, returncode=0, stdout="", stderr="")

    try:
        proc = subprocess.run(
            cmd,
            input=input_text,
            capture_output=True,
            text=True,
            cwd=cwd,
            env={**os.environ, **(env or {})},
            timeout=timeout,
        )
        result = CmdResult(argv=cmd, returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
    except FileNotFoundError as e:
        result = CmdResult(argv=cmd, returncode=NOT_FOUND, stdout="", stderr=str(e))
    except subprocess.TimeoutExpired:
        result = CmdResult(argv=cmd, returncode=TIMED_OUT, stdout="", stderr=f"timed out after {timeout}s")

    _log_output(result.stdout, result.stderr)
    if check and not result.ok:
        raise CommandError(cmd, result.returncode, result.stderr)
    return result


def run_shell(script: str, *, check: bool = True, dry_run: bool = False) -> CmdResult:
    """Run a pipeline through bash (vendor one-liners like `curl ... | bash`)."""

    return run_cmd(["bash", "-c", script], check=check, dry_run=dry_run)


def find_executable(cmd: str) -> Optional[str]:
    for d in SEARCH_PATHS:
        candidate = Path(d) / cmd
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return shutil.which(cmd)


def command_exists(cmd: str) -> bool:
    return find_executable(cmd) is not None
