from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..context import HostCtx
from ..lib import systemd
from ..lib.command import command_exists, run_cmd
from ..lib.download import download_file
from ..lib.files import remove_path, write_file
from ..state_store import record_decision

logger = logging.getLogger(__name__)

AGENT_BIN_NAME = "tacticalagent"
AGENT_UNIT = "tacticalagent.service"
MESH_UNIT = "meshagent.service"

# The mesh installer refuses to run without an X display; fake one.
HEADLESS_ENV = {"XAUTHORITY": "foo", "DISPLAY": "bar"}


def agent_unit_text(agent_bin: str) -> str:
    return systemd.render_unit(
        [
            (
                "Unit",
                {
                    "Description": "Tactical RMM Linux Agent",
                    "After": "network-online.target",
                    "Wants": "network-online.target",
                },
            ),
            (
                "Service",
                {
                    "Type": "simple",
                    "ExecStart": f"{agent_bin} -m svc",
                    "User": "root",
                    "Group": "root",
                    "Restart": "always",
                    "RestartSec": "5s",
                    "LimitNOFILE": "1000000",
                    "KillMode": "process",
                },
            ),
            ("Install", {"WantedBy": "multi-user.target"}),
        ]
    )


def agent_install_argv(agent_bin: str, rmm: Dict[str, Any], *, mesh_node_id: str = "") -> List[str]:
    argv = [
        agent_bin,
        "-m",
        "install",
        "-api",
        str(rmm["api_url"]),
        "-client-id",
        str(rmm["client_id"]),
        "-site-id",
        str(rmm["site_id"]),
        "-agent-type",
        str(rmm.get("agent_type") or "server"),
        "-auth",
        str(rmm["token"]),
    ]
    if mesh_node_id:
        argv += ["--meshnodeid", mesh_node_id]
    if rmm.get("debug"):
        argv += ["--log", "debug"]
    if rmm.get("insecure"):
        argv.append("--insecure")
    if rmm.get("proxy"):
        argv += ["--proxy", str(rmm["proxy"])]
    return argv


def require_headless(env: Optional[Mapping[str, str]] = None) -> None:
    env = os.environ if env is None else env
    if env.get("DISPLAY"):
        raise RuntimeError(
            "Display detected. The RMM agent installer only supports running headless, i.e. from ssh. "
            "Switch with 'systemctl isolate multi-user.target', or unset DISPLAY if it comes from X forwarding."
        )


class _RmmBase:
    def _agent_bin(self, ctx: HostCtx) -> str:
        return str(Path(ctx.paths.local_bin) / AGENT_BIN_NAME)

    def _remove_agent(self, ctx: HostCtx) -> None:
        dry = ctx.dry_run
        unit = Path(ctx.paths.systemd_dir) / AGENT_UNIT
        if unit.exists():
            systemd.stop_disable(AGENT_UNIT, dry_run=dry)
            remove_path(str(unit), dry_run=dry)
            systemd.daemon_reload(dry_run=dry)
        remove_path(ctx.paths.agent_conf, dry_run=dry)
        remove_path(self._agent_bin(ctx), dry_run=dry)
        remove_path(ctx.paths.agent_dir, dry_run=dry)

    def _remove_mesh(self, ctx: HostCtx) -> None:
        dry = ctx.dry_run
        mesh_bin = Path(ctx.paths.mesh_dir) / "meshagent"
        if mesh_bin.exists():
            run_cmd([str(mesh_bin), "-uninstall"], check=False, env=HEADLESS_ENV, dry_run=dry)
            time.sleep(0 if dry else 1)

        unit = Path(ctx.paths.lib_systemd_dir) / MESH_UNIT
        if unit.exists():
            systemd.stop_disable(MESH_UNIT, dry_run=dry)
            remove_path(str(unit), dry_run=dry)

        remove_path(ctx.paths.mesh_dir, dry_run=dry)
        systemd.daemon_reload(dry_run=dry)


class InstallRmmStep(_RmmBase):
    step_id = "40_install_rmm"
    module = "rmm"

    def _set_locale(self, ctx: HostCtx) -> None:
        dry = ctx.dry_run
        if ctx.distro.is_debian:
            run_cmd(["locale-gen", "en_US.UTF-8"], check=False, dry_run=dry)
        else:
            run_cmd(["localedef", "-c", "-i", "en_US", "-f", "UTF-8", "en_US.UTF-8"], check=False, dry_run=dry)
        run_cmd(["localectl", "set-locale", "LANG=en_US.UTF-8"], check=False, dry_run=dry)

    def _install_mesh(self, ctx: HostCtx, mesh_url: str, agent_bin: str) -> str:
        dry = ctx.dry_run
        if (Path(ctx.paths.mesh_dir) / "meshagent").exists():
            self._remove_mesh(ctx)

        logger.info("Downloading and installing mesh agent...")
        self._set_locale(ctx)

        tmp_bin = str(Path(ctx.paths.mesh_tmp_dir) / "meshagent")
        download_file(mesh_url, tmp_bin, mode=0o755, verify_tls=False, dry_run=dry)
        if not dry:
            Path(ctx.paths.mesh_dir).mkdir(parents=True, exist_ok=True)
        try:
            run_cmd(
                [tmp_bin, "-install", f"--installPath={ctx.paths.mesh_dir}"],
                env={"LC_ALL": "en_US.UTF-8", "LANGUAGE": "en_US", **HEADLESS_ENV},
                dry_run=dry,
            )
            time.sleep(0 if dry else 2)
        finally:
            remove_path(ctx.paths.mesh_tmp_dir, dry_run=dry)

        logger.info("Getting mesh node id...")
        r = run_cmd([agent_bin, "-m", "nixmeshnodeid"], check=False, env=HEADLESS_ENV, dry_run=dry)
        return r.stdout.strip() if r.ok else ""

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        logger.info("Installing RMM agent...")

        if ctx.distro.is_nixos:
            logger.info("RMM agent installation on NixOS requires special handling.")
            logger.info("Please configure the agent as a NixOS service.")
            record_decision(state, "rmm", {"installed": False, "reason": "nixos"})
            return state

        if not ctx.dry_run and not systemd.pid1_is_systemd():
            raise RuntimeError("The RMM agent install only supports systemd")
        require_headless()

        rmm = ctx.cfg.rmm
        agent_url = ctx.cfg.rmm_required("agent_url")
        for key in ("api_url", "token", "client_id", "site_id"):
            ctx.cfg.rmm_required(key)

        agent_bin = self._agent_bin(ctx)
        self._remove_agent(ctx)

        logger.info("Downloading tactical agent...")
        download_file(agent_url, agent_bin, mode=0o755, dry_run=ctx.dry_run)

        mesh_node_id = ""
        if rmm.get("nomesh"):
            logger.info("Skipping mesh install")
        else:
            mesh_url = ctx.cfg.rmm_required("mesh_url")
            mesh_node_id = self._install_mesh(ctx, mesh_url, agent_bin)

        run_cmd(agent_install_argv(agent_bin, rmm, mesh_node_id=mesh_node_id), dry_run=ctx.dry_run)

        write_file(str(Path(ctx.paths.systemd_dir) / AGENT_UNIT), agent_unit_text(agent_bin), dry_run=ctx.dry_run)
        systemd.daemon_reload(dry_run=ctx.dry_run)
        systemd.enable_now(AGENT_UNIT, dry_run=ctx.dry_run)

        record_decision(state, "rmm", {"installed": True, "mesh": bool(mesh_node_id), "agent_bin": agent_bin})
        logger.info("RMM agent installation completed.")
        return state


class UninstallRmmStep(_RmmBase):
    step_id = "41_uninstall_rmm"
    module = "rmm-uninstall"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        if ctx.distro.is_nixos or not command_exists("systemctl"):
            logger.info("No systemd-managed RMM agent to remove")
            return state

        logger.info("Removing RMM and mesh agents...")
        self._remove_mesh(ctx)
        self._remove_agent(ctx)
        record_decision(state, "rmm", {"installed": False, "reason": "uninstalled"})
        logger.info("RMM agent removed.")
        return state
