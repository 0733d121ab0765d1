from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import Any, Dict, Tuple

from ..context import HostCtx
from ..lib import nixos, systemd
from ..lib.command import command_exists, find_executable, run_cmd, run_shell
from ..lib.distro import read_os_release
from ..lib.download import download_file
from ..lib.files import write_file
from ..state_store import record_decision, record_warning
from .step_10_setup_users import user_exists

logger = logging.getLogger(__name__)

DOCKER_PACKAGES = ("docker-ce", "docker-ce-cli", "containerd.io", "docker-compose-plugin")
DOCKER_RHEL_REPO = "https://download.docker.com/linux/centos/docker-ce.repo"
COMPOSE_URL = "https://github.com/docker/compose/releases/download/{version}/docker-compose-{system}-{machine}"


def docker_apt_source(arch: str, distro_id: str, codename: str, keyring: str) -> str:
    return f"deb [arch={arch} signed-by={keyring}] https://download.docker.com/linux/{distro_id} {codename} stable\n"


def docker_apt_repo(os_release: Dict[str, str], fallback_codename: str) -> Tuple[str, str]:
    """Docker publishes ubuntu, debian and raspbian trees; derivatives use their base.

    Returns the repo tree and the codename that exists in it.
    """

    distro_id = os_release.get("ID", "").lower()
    if distro_id in ("ubuntu", "debian", "raspbian"):
        return distro_id, os_release.get("VERSION_CODENAME") or fallback_codename
    if os_release.get("UBUNTU_CODENAME"):
        return "ubuntu", os_release["UBUNTU_CODENAME"]
    if os_release.get("DEBIAN_CODENAME"):
        return "debian", os_release["DEBIAN_CODENAME"]
    return "ubuntu", fallback_codename


class InstallDockerStep:
    step_id = "60_install_docker"
    module = "docker"

    def _debian(self, ctx: HostCtx) -> None:
        dry = ctx.dry_run
        ctx.pkg.remove("docker", "docker-engine", "docker.io", "containerd", "runc")
        ctx.pkg.install("ca-certificates", "curl", "gnupg", "lsb-release")

        keyring = str(Path(ctx.paths.apt_keyrings_dir) / "docker.gpg")
        if not dry:
            Path(ctx.paths.apt_keyrings_dir).mkdir(parents=True, exist_ok=True)
        lsb = run_cmd(["lsb_release", "-cs"], check=False, dry_run=dry).stdout.strip() or "jammy"
        distro_id, codename = docker_apt_repo(read_os_release(ctx.paths.os_release), lsb)
        run_shell(
            f"curl -fsSL https://download.docker.com/linux/{distro_id}/gpg | gpg --yes --dearmor -o {keyring}",
            dry_run=dry,
        )
        run_cmd(["chmod", "a+r", keyring], dry_run=dry)

        arch = run_cmd(["dpkg", "--print-architecture"], check=False, dry_run=dry).stdout.strip() or "amd64"
        write_file(
            str(Path(ctx.paths.apt_sources_dir) / "docker.list"),
            docker_apt_source(arch, distro_id, codename, keyring),
            dry_run=dry,
        )
        ctx.pkg.install(*DOCKER_PACKAGES)

    def _rhel(self, ctx: HostCtx) -> None:
        if ctx.pkg.is_installed("podman"):
            logger.info("Removing podman...")
            ctx.pkg.remove("podman", "buildah", check=True)
        ctx.pkg.install("yum-utils")
        ctx.pkg.add_repo(DOCKER_RHEL_REPO)
        ctx.pkg.install(*DOCKER_PACKAGES)

    def _install_compose(self, ctx: HostCtx) -> None:
        if command_exists("docker-compose"):
            return
        logger.info("Installing docker-compose...")
        url = COMPOSE_URL.format(
            version=ctx.cfg.compose_version,
            system=platform.system(),
            machine=platform.machine(),
        )
        download_file(url, str(Path(ctx.paths.local_bin) / "docker-compose"), mode=0o755, dry_run=ctx.dry_run)

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        logger.info("Installing Docker...")

        if ctx.distro.is_nixos:
            nixos.advise("docker", nixos.docker_block(ctx.username))
            record_decision(state, "docker", {"installed": False, "reason": "nixos"})
            return state

        if ctx.distro.is_debian:
            self._debian(ctx)
        elif ctx.distro.is_rhel:
            self._rhel(ctx)
        else:
            raise RuntimeError(f"Unsupported distribution for Docker: {ctx.distro.id}")

        if command_exists("systemctl"):
            systemd.enable_now("docker", dry_run=ctx.dry_run)

        if user_exists(ctx.username) and command_exists("usermod"):
            run_cmd(["usermod", "-aG", "docker", ctx.username], dry_run=ctx.dry_run)

        self._install_compose(ctx)

        version = ""
        docker = find_executable("docker")
        if docker:
            version = run_cmd([docker, "--version"], check=False, dry_run=ctx.dry_run).stdout.strip()
            logger.info("Docker installation completed successfully. %s", version)
        else:
            logger.warning("Docker installation may have failed.")
            record_warning(state, {"docker": "binary_not_found"})

        record_decision(state, "docker", {"installed": bool(docker), "version": version})
        return state
