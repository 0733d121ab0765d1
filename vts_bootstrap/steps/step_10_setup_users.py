from __future__ import annotations

import logging
import os
import pwd
from pathlib import Path
from typing import Any, Dict, List

from ..context import HostCtx
from ..lib import nixos
from ..lib.command import command_exists, run_cmd
from ..lib.files import remove_path, write_file
from ..state_store import record_decision

logger = logging.getLogger(__name__)


def user_exists(username: str) -> bool:
    try:
        pwd.getpwnam(username)
        return True
    except KeyError:
        return False


def _home_dir(username: str, home_root: str) -> Path:
    try:
        return Path(pwd.getpwnam(username).pw_dir)
    except KeyError:
        return Path(home_root) / username


def sudoers_line(username: str) -> str:
    return f"{username} ALL=(ALL) NOPASSWD: ALL\n"


def merge_authorized_keys(existing: str, keys: List[str]) -> str:
    """Append keys not already present, keeping existing lines and order."""

    lines = [ln for ln in existing.splitlines() if ln.strip()]
    for k in keys:
        if k not in lines:
            lines.append(k)
    return "\n".join(lines) + "\n" if lines else ""


class SetupUsersStep:
    step_id = "10_setup_users"
    module = "setupusers"

    def _create_user(self, ctx: HostCtx) -> None:
        user = ctx.username
        if user_exists(user):
            logger.info("User '%s' already exists. Updating password...", user)
            return
        if ctx.distro.is_debian and command_exists("adduser"):
            run_cmd(["adduser", "--disabled-password", "--gecos", "", user], dry_run=ctx.dry_run)
        else:
            run_cmd(["useradd", "-m", "-s", "/bin/bash", user], dry_run=ctx.dry_run)
        if not ctx.dry_run and not user_exists(user):
            raise RuntimeError(f"Failed to create user '{user}'")
        logger.info("User '%s' created", user)

    def _set_password(self, ctx: HostCtx) -> None:
        if not ctx.password:
            logger.warning("No password supplied; leaving password for %s unchanged", ctx.username)
            return
        run_cmd(
            ["chpasswd"],
            input_text=f"{ctx.username}:{ctx.password}\n",
            secret_input=True,
            dry_run=ctx.dry_run,
        )

    def _configure_sudo(self, ctx: HostCtx) -> str:
        user = ctx.username
        group = "sudo" if ctx.distro.is_debian else "wheel"
        if command_exists("usermod"):
            run_cmd(["usermod", "-aG", group, user], check=False, dry_run=ctx.dry_run)

        sudoers = str(Path(ctx.paths.sudoers_dir) / user)
        write_file(sudoers, sudoers_line(user), mode=0o440, dry_run=ctx.dry_run)

        if command_exists("visudo"):
            r = run_cmd(["visudo", "-c", "-f", sudoers], check=False, dry_run=ctx.dry_run)
            if not r.ok:
                remove_path(sudoers)
                raise RuntimeError(f"Invalid sudoers configuration: {sudoers}")
        return group

    def _install_ssh_keys(self, ctx: HostCtx) -> int:
        keys = ctx.cfg.ssh_keys
        if not keys:
            return 0

        user = ctx.username
        ssh_dir = _home_dir(user, ctx.paths.home_root) / ".ssh"
        auth = ssh_dir / "authorized_keys"
        if ctx.dry_run:
            logger.info("Would install %d SSH key(s) into %s", len(keys), str(auth))
            return len(keys)

        ssh_dir.mkdir(parents=True, exist_ok=True)
        existing = auth.read_text(encoding="utf-8") if auth.exists() else ""
        merged = merge_authorized_keys(existing, keys)
        if merged != existing:
            auth.write_text(merged, encoding="utf-8")
            logger.info("SSH key(s) added to %s", str(auth))
        else:
            logger.info("SSH key(s) already present in %s", str(auth))

        os.chmod(ssh_dir, 0o700)
        os.chmod(auth, 0o600)
        run_cmd(["chown", "-R", f"{user}:{user}", str(ssh_dir)], check=False)
        return len(keys)

    def _nixos_declarative(self, ctx: HostCtx) -> None:
        password_hash = ""
        if ctx.password and command_exists("mkpasswd"):
            r = run_cmd(
                ["mkpasswd", "-m", "sha-512", "-s"],
                input_text=ctx.password + "\n",
                secret_input=True,
                dry_run=ctx.dry_run,
            )
            password_hash = r.stdout.strip()
        else:
            logger.warning("mkpasswd not found. User will need to set password manually.")

        block = "\n".join(
            [
                nixos.user_block(ctx.username, password_hash=password_hash, ssh_keys=ctx.cfg.ssh_keys),
                nixos.sudo_block(ctx.username),
            ]
        )
        nixos.append_block(
            ctx.paths.nixos_config,
            "User configuration",
            block,
            backup_path=ctx.paths.nixos_backup,
            dry_run=ctx.dry_run,
        )

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        logger.info("Setting up users...")

        if ctx.distro.is_nixos and nixos.has_immutable_users(ctx.paths.nixos_config):
            logger.info("NixOS has immutable users. Adding user configuration to %s", ctx.paths.nixos_config)
            self._nixos_declarative(ctx)
            record_decision(state, "admin_user", {"username": ctx.username, "mode": "nixos-declarative"})
            return state

        if ctx.distro.is_nixos:
            logger.warning("On NixOS, users should be configured in configuration.nix")
            nixos.advise("persistent user", nixos.user_block(ctx.username))

        self._create_user(ctx)
        self._set_password(ctx)
        group = self._configure_sudo(ctx)
        nkeys = self._install_ssh_keys(ctx)

        record_decision(
            state,
            "admin_user",
            {"username": ctx.username, "sudo_group": group, "ssh_keys": nkeys, "mode": "imperative"},
        )
        logger.info("User setup completed.")
        return state
