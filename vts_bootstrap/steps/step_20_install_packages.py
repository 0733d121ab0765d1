from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import Any, Dict, List

from ..context import HostCtx
from ..lib import nixos
from ..lib.download import download_file
from ..lib.pkg import map_package_name
from ..state_store import record_decision, record_warning

logger = logging.getLogger(__name__)

COMMON_PACKAGES = ("vim", "wget", "curl", "tmux", "unzip", "git", "htop", "pciutils")

DEBIAN_EXTRAS = (
    "linux-headers-{kernel}",
    "dkms",
    "clevis",
    "clevis-luks",
    "clevis-tpm2",
    "ansible",
    "whois",
    "cifs-utils",
    "usbutils",
    "net-tools",
    "iputils-ping",
    "lshw",
    "mesa-utils",
    "mesa-vulkan-drivers",
)

RHEL_EXTRAS = (
    "kernel-devel-{kernel}",
    "dkms",
    "clevis",
    "clevis-luks",
    "clevis-systemd",
    "ansible",
    "whois",
    "cifs-utils",
    "usbutils",
    "net-tools",
    "iputils",
    "lshw",
    "mesa-dri-drivers",
    "mesa-vulkan-drivers",
)

NIX_BATCHES = (
    ("vim", "wget", "curl", "tmux"),
    ("unzip", "git", "htop", "pciutils"),
    ("clevis", "ansible"),
    ("whois", "cifs-utils"),
    ("usbutils", "lshw"),
    ("nettools", "iputils"),
    ("mesa", "mesa-demos"),
)


def package_plan(distro_id: str, family: str, kernel: str, extra: List[str]) -> List[str]:
    """Resolve the package list for a distribution, without duplicates."""

    pkgs = [map_package_name(p, distro_id) for p in COMMON_PACKAGES]
    extras = DEBIAN_EXTRAS if family == "debian" else RHEL_EXTRAS if family == "rhel" else ()
    pkgs.extend(p.format(kernel=kernel) for p in extras)
    pkgs.extend(map_package_name(p, distro_id) for p in extra)

    dedup: List[str] = []
    for p in pkgs:
        if p and p not in dedup:
            dedup.append(p)
    return dedup


class InstallPackagesStep:
    step_id = "20_install_packages"
    module = "packages"

    def _install_kernel(self, ctx: HostCtx) -> str:
        if not ctx.cfg.mainline_kernel:
            return "skipped"
        logger.info("Installing mainline kernel...")
        if ctx.distro.is_debian:
            ok = ctx.pkg.try_install("linux-generic") or ctx.pkg.try_install("linux-image-generic")
        else:
            ok = ctx.pkg.try_install("kernel", "kernel-devel")
        return "installed" if ok else "failed"

    def _install_oh_my_posh(self, ctx: HostCtx) -> None:
        url = ctx.cfg.oh_my_posh_url
        if not url:
            return
        dest = str(Path(ctx.paths.local_bin) / "oh-my-posh")
        download_file(url, dest, mode=0o755, dry_run=ctx.dry_run)

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        logger.info("Installing required packages...")

        if ctx.distro.is_nixos:
            extra = ctx.cfg.extra_packages
            block = nixos.packages_block([a for batch in NIX_BATCHES for a in batch] + extra)
            if ctx.cfg.mainline_kernel:
                block += "\n" + nixos.LATEST_KERNEL_BLOCK
            nixos.advise("packages", block)

            for batch in NIX_BATCHES:
                ctx.pkg.nix_install_attrs(batch)
            if extra:
                ctx.pkg.nix_install_attrs(extra)
            record_decision(state, "packages", {"nix_batches": [list(b) for b in NIX_BATCHES], "extra": extra})
            logger.info("Package installation attempted for NixOS")
            return state

        packages = package_plan(ctx.distro.id, ctx.distro.family, platform.release(), ctx.cfg.extra_packages)

        if ctx.distro.is_rhel:
            # EPEL carries dkms, neofetch and friends on EL clones.
            ctx.pkg.try_install("epel-release")

        ctx.pkg.update_system()
        failed = ctx.pkg.install_each(packages)
        kernel = self._install_kernel(ctx)

        self._install_oh_my_posh(ctx)

        record_decision(state, "packages", {"requested": packages, "failed": failed, "kernel": kernel})
        if failed:
            record_warning(state, {"packages_failed": failed})
        if kernel == "failed":
            record_warning(state, {"kernel": "mainline_install_failed"})
        logger.info("Package installation completed (%d requested, %d failed)", len(packages), len(failed))
        return state
