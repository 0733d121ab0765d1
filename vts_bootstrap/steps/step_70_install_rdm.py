from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import HostCtx
from ..lib import nixos
from ..lib.command import command_exists, run_cmd, run_shell
from ..lib.distro import rhel_major
from ..lib.download import fetch_text
from ..lib.files import remove_path, write_file
from ..lib.hwdetect import detect_system_type
from ..state_store import record_decision

logger = logging.getLogger(__name__)

RDM_DEB_SETUP = "https://dl.cloudsmith.io/public/devolutions/rdm/setup.deb.sh"
RDM_GPG_KEY = "https://dl.cloudsmith.io/public/devolutions/rdm/gpg.FE7407ECB26FD2FE.key"
RDM_RPM_REPO = "https://dl.cloudsmith.io/public/devolutions/rdm/config.rpm.txt?distro=el&codename={v}"
RDM_PACKAGE = "remotedesktopmanager-free"
RDM_FLATPAK = "net.devolutions.RDM"
FLATHUB = "https://flathub.org/repo/flathub.flatpakrepo"
RDM_REPO_TMP = "/tmp/devolutions-rdm.repo"


class InstallRdmStep:
    """Devolutions Remote Desktop Manager; workstations only."""

    step_id = "70_install_rdm"
    module = "rdm"

    def _debian(self, ctx: HostCtx) -> None:
        logger.info("Adding Devolutions repository...")
        run_shell(f"curl -1sLf '{RDM_DEB_SETUP}' | bash", dry_run=ctx.dry_run)
        ctx.pkg.install(RDM_PACKAGE)
        ctx.pkg.try_install("ca-certificates-mozilla", "libsecret-1-0", "libwebkit2gtk-4.0-37")

    def _rhel(self, ctx: HostCtx) -> None:
        run_cmd(["rpm", "--import", RDM_GPG_KEY], dry_run=ctx.dry_run)
        v = rhel_major(ctx.distro.version_id, dry_run=ctx.dry_run)
        repo = fetch_text(RDM_RPM_REPO.format(v=v), dry_run=ctx.dry_run)
        write_file(RDM_REPO_TMP, repo, dry_run=ctx.dry_run)
        try:
            ctx.pkg.add_repo(RDM_REPO_TMP)
            ctx.pkg.install(RDM_PACKAGE)
        finally:
            remove_path(RDM_REPO_TMP, dry_run=ctx.dry_run)

    def _nixos(self, ctx: HostCtx) -> bool:
        logger.info("Devolutions RDM is not in nixpkgs. Installing via Flatpak...")
        if not command_exists("flatpak"):
            nixos.advise("flatpak", nixos.FLATPAK_BLOCK)
            logger.info(
                "After enabling Flatpak, run:\n"
                "flatpak remote-add --if-not-exists flathub %s\n"
                "flatpak install flathub %s",
                FLATHUB,
                RDM_FLATPAK,
            )
            return False
        run_cmd(["flatpak", "remote-add", "--if-not-exists", "flathub", FLATHUB], dry_run=ctx.dry_run)
        run_cmd(["flatpak", "install", "-y", "flathub", RDM_FLATPAK], dry_run=ctx.dry_run)
        return True

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)

        system_type = detect_system_type()
        record_decision(state, "system_type", system_type)
        if system_type != "WORKSTATION" and not ctx.cfg.force_rdm:
            logger.info("Server detected; skipping Remote Desktop Manager")
            record_decision(state, "rdm", {"installed": False, "reason": "server"})
            return state

        logger.info("Installing Devolutions Remote Desktop Manager...")
        installed = True
        if ctx.distro.is_debian:
            self._debian(ctx)
        elif ctx.distro.is_rhel:
            self._rhel(ctx)
        elif ctx.distro.is_nixos:
            installed = self._nixos(ctx)
        else:
            raise RuntimeError(f"Unsupported distribution for RDM installation: {ctx.distro.id}")

        record_decision(state, "rdm", {"installed": installed})
        if installed:
            logger.info("Devolutions Remote Desktop Manager installation completed.")
            logger.info("Free edition requires registration after 30-day trial. Launch with: remotedesktopmanager")
        return state
