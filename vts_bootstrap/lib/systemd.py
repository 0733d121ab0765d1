from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .command import command_exists, run_cmd

logger = logging.getLogger(__name__)


def check_systemd(*, is_nixos: bool) -> bool:
    """systemctl must be present and answer --version (NixOS is exempt)."""

    if is_nixos:
        return True
    if not command_exists("systemctl"):
        logger.error("systemd is required but not found")
        return False
    if not run_cmd(["systemctl", "--version"], check=False).ok:
        logger.error("systemd is not functioning properly")
        return False
    return True


def pid1_is_systemd() -> bool:
    r = run_cmd(["ps", "--no-headers", "-o", "comm", "1"], check=False)
    return r.stdout.strip() == "systemd"


def render_unit(sections: Sequence[tuple[str, Mapping[str, str]]]) -> str:
    """Render an ini-style unit file from ordered (section, options) pairs."""

    chunks: list[str] = []
    for name, opts in sections:
        lines = [f"[{name}]"] + [f"{k}={v}" for k, v in opts.items()]
        chunks.append("\n".join(lines))
    return "\n\n".join(chunks) + "\n"


def daemon_reload(*, dry_run: bool = False) -> None:
    run_cmd(["systemctl", "daemon-reload"], dry_run=dry_run)


def enable_now(unit: str, *, dry_run: bool = False) -> None:
    run_cmd(["systemctl", "enable", unit], dry_run=dry_run)
    run_cmd(["systemctl", "start", unit], dry_run=dry_run)


def stop_disable(unit: str, *, dry_run: bool = False) -> None:
    run_cmd(["systemctl", "stop", unit], check=False, dry_run=dry_run)
    run_cmd(["systemctl", "disable", unit], check=False, dry_run=dry_run)
