"""configuration.nix fragments.

NixOS is declarative: instead of installing imperatively, the bootstrap
appends marked blocks to configuration.nix (after a one-time backup) or logs
the block for the operator to paste. Nothing here runs nixos-rebuild.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .files import append_file, backup_file

logger = logging.getLogger(__name__)

MARKER = "added by vts-bootstrap"


def user_block(username: str, *, password_hash: str = "", ssh_keys: Sequence[str] = ()) -> str:
    lines = [
        f"users.users.{username} = {{",
        "  isNormalUser = true;",
        '  extraGroups = [ "wheel" ];',
    ]
    if password_hash:
        lines.append(f'  hashedPassword = "{password_hash}";')
    if ssh_keys:
        lines.append("  openssh.authorizedKeys.keys = [")
        lines.extend(f'    "{k}"' for k in ssh_keys)
        lines.append("  ];")
    lines.append("};")
    return "\n".join(lines)


def sudo_block(username: str) -> str:
    return "\n".join(
        [
            "security.sudo.extraRules = [{",
            f'  users = [ "{username}" ];',
            '  commands = [{ command = "ALL"; options = [ "NOPASSWD" ]; }];',
            "}];",
        ]
    )


NVIDIA_BLOCK = """hardware.nvidia = {
  modesetting.enable = true;
  package = config.boot.kernelPackages.nvidiaPackages.stable;
};
services.xserver.videoDrivers = ["nvidia"];"""

AMD_BLOCK = """hardware.graphics = {
  enable = true;
  enable32Bit = true;
};
boot.initrd.kernelModules = [ "amdgpu" ];
services.xserver.videoDrivers = [ "amdgpu" ];
hardware.graphics.extraPackages = with pkgs; [
  amdvlk
];"""

INTEL_BLOCK = """hardware.graphics = {
  enable = true;
  enable32Bit = true;
  extraPackages = with pkgs; [
    intel-media-driver
    intel-compute-runtime
    vpl-gpu-rt
  ];
};
boot.initrd.kernelModules = [ "i915" ];"""


def docker_block(username: str) -> str:
    return "\n".join(
        [
            "virtualisation.docker = {",
            "  enable = true;",
            "  enableOnBoot = true;",
            "};",
            f'users.users.{username}.extraGroups = [ "docker" ];',
        ]
    )


def timezone_block(tz: str) -> str:
    return f'time.timeZone = "{tz}";'


def packages_block(attrs: Sequence[str]) -> str:
    body = "\n".join(f"  {a}" for a in attrs)
    return f"environment.systemPackages = with pkgs; [\n{body}\n];"


LATEST_KERNEL_BLOCK = "boot.kernelPackages = pkgs.linuxPackages_latest;"


FLATPAK_BLOCK = "services.flatpak.enable = true;"


def has_immutable_users(config_path: str) -> bool:
    p = Path(config_path)
    if not p.exists():
        return False
    return "users.mutableUsers = false" in p.read_text(encoding="utf-8", errors="ignore")


def append_block(
    config_path: str,
    title: str,
    block: str,
    *,
    backup_path: str | None = None,
    dry_run: bool = False,
) -> None:
    """Append a marked block to configuration.nix, backing it up first."""

    if backup_path and not Path(backup_path).exists():
        backup_file(config_path, backup_path, dry_run=dry_run)
    append_file(config_path, f"\n# {title} ({MARKER})\n{block}\n", dry_run=dry_run)
    logger.info("%s added to %s. Run: nixos-rebuild switch", title, config_path)


def advise(title: str, block: str) -> None:
    logger.info("For NixOS, add to configuration.nix (%s):\n%s", title, block)
