from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import Any, Dict

from ..context import HostCtx
from ..lib import nixos
from ..lib.command import command_exists, run_cmd, run_shell
from ..lib.distro import rhel_major
from ..lib.files import write_file
from ..lib.hwdetect import detect_gpu_vendor, is_intel_arc
from ..state_store import record_decision

logger = logging.getLogger(__name__)

CUDA_REPO = "https://developer.download.nvidia.com/compute/cuda/repos/rhel{v}/x86_64/cuda-rhel{v}.repo"
AMDGPU_REPO = "https://repo.radeon.com/amdgpu-install/6.0/rhel/{v}/amdgpu-install.repo"
INTEL_KEY = "https://repositories.intel.com/graphics/intel-graphics.key"
INTEL_RHEL_REPO = "https://repositories.intel.com/graphics/rhel/{v}/intel-graphics.repo"
INTEL_APT_REPO = "https://repositories.intel.com/graphics/ubuntu"


def _lsb_codename(ctx: HostCtx) -> str:
    r = run_cmd(["lsb_release", "-cs"], check=False, dry_run=ctx.dry_run)
    return r.stdout.strip() or "jammy"


class InstallGpuDriversStep:
    step_id = "30_install_gpu_drivers"
    module = "gpu"

    # -- NVIDIA ----------------------------------------------------------

    def _nvidia(self, ctx: HostCtx) -> None:
        dry = ctx.dry_run
        if ctx.distro.is_debian:
            if command_exists("add-apt-repository"):
                run_cmd(["add-apt-repository", "-y", "ppa:graphics-drivers/ppa"], dry_run=dry)
                run_cmd(["apt-get", "update"], dry_run=dry)
            if command_exists("ubuntu-drivers"):
                run_cmd(["ubuntu-drivers", "install"], dry_run=dry)
            else:
                ctx.pkg.install("nvidia-driver-535", "nvidia-utils-535")
        elif ctx.distro.is_rhel:
            ctx.pkg.try_install("epel-release")
            v = rhel_major(ctx.distro.version_id, dry_run=ctx.dry_run)
            ctx.pkg.add_repo(CUDA_REPO.format(v=v))
            kernel = platform.release()
            ctx.pkg.install(f"kernel-devel-{kernel}", f"kernel-headers-{kernel}")
            ctx.pkg.install("dkms", "gcc", "make")
            ctx.pkg.install("nvidia-driver", "nvidia-settings")

            write_file(str(Path(ctx.paths.modprobe_dir) / "blacklist-nouveau.conf"), "blacklist nouveau\n", dry_run=dry)
            write_file(
                str(Path(ctx.paths.dracut_dir) / "blacklist-nouveau.conf"),
                'omit_drivers+=" nouveau "\n',
                dry_run=dry,
            )
            run_cmd(["dracut", "--regenerate-all", "--force"], dry_run=dry)
        elif ctx.distro.is_nixos:
            nixos.append_block(
                ctx.paths.nixos_config,
                "NVIDIA GPU configuration",
                nixos.NVIDIA_BLOCK,
                backup_path=ctx.paths.nixos_backup,
                dry_run=dry,
            )

    # -- AMD -------------------------------------------------------------

    def _amd(self, ctx: HostCtx) -> None:
        dry = ctx.dry_run
        if ctx.distro.is_debian:
            logger.info("Installing open-source AMD drivers (Mesa/AMDGPU)...")
            ctx.pkg.install("mesa-vulkan-drivers", "mesa-va-drivers", "mesa-vdpau-drivers")
            ctx.pkg.install("libdrm-amdgpu1", "xserver-xorg-video-amdgpu")
            if command_exists("add-apt-repository"):
                logger.info("Adding graphics drivers PPA for newer Mesa...")
                run_cmd(["add-apt-repository", "-y", "ppa:oibaf/graphics-drivers"], dry_run=dry)
                ctx.pkg.update_system()
            logger.info("AMDGPU-PRO has compatibility issues with Ubuntu 22.04+; using open-source drivers.")
        elif ctx.distro.is_rhel:
            ctx.pkg.try_install("epel-release")
            ctx.pkg.enable_repo("crb", "powertools")
            ctx.pkg.install(AMDGPU_REPO.format(v=rhel_major(ctx.distro.version_id, dry_run=ctx.dry_run)))
            ctx.pkg.install("amdgpu-install")
            run_cmd(["amdgpu-install", "-y", "--usecase=graphics,rocm", "--vulkan=amdvlk,radv"], dry_run=dry)
            run_cmd(["usermod", "-a", "-G", "video,render", ctx.username], check=False, dry_run=dry)
        elif ctx.distro.is_nixos:
            nixos.append_block(
                ctx.paths.nixos_config,
                "AMD GPU configuration",
                nixos.AMD_BLOCK,
                backup_path=ctx.paths.nixos_backup,
                dry_run=dry,
            )

    # -- Intel -----------------------------------------------------------

    def _intel_arc_repo(self, ctx: HostCtx) -> None:
        dry = ctx.dry_run
        keyring = str(Path(ctx.paths.usr_share_keyrings) / "intel-graphics.gpg")
        run_shell(f"wget -qO - {INTEL_KEY} | gpg --yes --dearmor --output {keyring}", dry_run=dry)
        codename = _lsb_codename(ctx)
        write_file(
            str(Path(ctx.paths.apt_sources_dir) / f"intel-gpu-{codename}.list"),
            f"deb [arch=amd64 signed-by={keyring}] {INTEL_APT_REPO} {codename} main\n",
            dry_run=dry,
        )
        run_cmd(["apt-get", "update"], dry_run=dry)

    def _intel(self, ctx: HostCtx) -> None:
        dry = ctx.dry_run
        if ctx.distro.is_debian:
            ctx.pkg.install("mesa-vulkan-drivers", "mesa-va-drivers", "mesa-vdpau-drivers")
            ctx.pkg.install("intel-media-va-driver", "i965-va-driver")
            ctx.pkg.try_install("libva-intel-driver", "intel-gpu-tools")
            if is_intel_arc():
                logger.info("Intel Arc GPU detected. Installing additional drivers...")
                self._intel_arc_repo(ctx)
                ctx.pkg.install("intel-opencl-icd", "intel-level-zero-gpu", "level-zero")
                ctx.pkg.install("intel-media-va-driver-non-free")
        elif ctx.distro.is_rhel:
            ctx.pkg.install("mesa-dri-drivers", "mesa-vulkan-drivers", "mesa-va-drivers")
            ctx.pkg.install("intel-media-driver", "libva-intel-driver")
            run_cmd(["rpm", "--import", INTEL_KEY], dry_run=dry)
            ctx.pkg.add_repo(INTEL_RHEL_REPO.format(v=rhel_major(ctx.distro.version_id, dry_run=ctx.dry_run)))
            ctx.pkg.install("intel-opencl", "intel-media", "libmfxgen1", "libvpl2")
        elif ctx.distro.is_nixos:
            nixos.append_block(
                ctx.paths.nixos_config,
                "Intel GPU configuration",
                nixos.INTEL_BLOCK,
                backup_path=ctx.paths.nixos_backup,
                dry_run=dry,
            )

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        logger.info("Detecting GPU...")

        vendor = detect_gpu_vendor()
        logger.info("GPU Vendor detected: %s", vendor)
        record_decision(state, "gpu_vendor", vendor)

        handler = {"NVIDIA": self._nvidia, "AMD": self._amd, "Intel": self._intel}.get(vendor)
        if handler is None:
            logger.info("No supported GPU detected or unable to detect GPU vendor.")
            return state

        logger.info("Installing %s drivers...", vendor)
        handler(ctx)
        logger.info("%s driver installation completed.", vendor)
        return state
