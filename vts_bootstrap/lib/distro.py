from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

from .command import command_exists, run_cmd
from .env import PATHS

logger = logging.getLogger(__name__)

DEBIAN_IDS = {"ubuntu", "debian", "raspbian", "linuxmint"}
RHEL_IDS = {"rhel", "centos", "rocky", "fedora", "almalinux", "ol"}


class UnsupportedDistroError(RuntimeError):
    pass


def parse_os_release(text: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        out[key.strip()] = parts[0] if parts else ""
    return out


def read_os_release(path: str = PATHS.os_release) -> Dict[str, str]:
    p = Path(path)
    if not p.exists():
        return {}
    return parse_os_release(p.read_text(encoding="utf-8", errors="ignore"))


def family_for(os_id: str, id_like: str = "") -> str:
    """Map an os-release ID/ID_LIKE pair to debian, rhel or nixos."""

    os_id = os_id.lower()
    if os_id in DEBIAN_IDS:
        return "debian"
    if os_id in RHEL_IDS:
        return "rhel"
    if os_id == "nixos":
        return "nixos"

    like = id_like.lower()
    if "debian" in like or "ubuntu" in like:
        return "debian"
    if "rhel" in like or "fedora" in like:
        return "rhel"
    raise UnsupportedDistroError(f"Unsupported OS: {os_id or 'unknown'}")


def _scan_package_managers() -> str:
    for cmd, name in (("apt-get", "apt"), ("dnf", "dnf"), ("yum", "yum"), ("nix-env", "nix")):
        if command_exists(cmd):
            return name
    return "unknown"


@dataclass(frozen=True)
class Distro:
    id: str
    id_like: str
    version_id: str
    pretty_name: str

    @property
    def family(self) -> str:
        return family_for(self.id, self.id_like)

    @property
    def is_nixos(self) -> bool:
        return self.id == "nixos"

    @property
    def is_debian(self) -> bool:
        try:
            return self.family == "debian"
        except UnsupportedDistroError:
            return False

    @property
    def is_rhel(self) -> bool:
        try:
            return self.family == "rhel"
        except UnsupportedDistroError:
            return False

    def package_manager(self) -> str:
        try:
            fam = self.family
        except UnsupportedDistroError:
            return _scan_package_managers()
        if fam == "debian":
            return "apt"
        if fam == "rhel":
            return "dnf" if command_exists("dnf") else "yum"
        return "nix"


def detect_distro(path: str = PATHS.os_release) -> Distro:
    info = read_os_release(path)
    if not info:
        logger.warning("Cannot read %s; distribution unknown", path)
    return Distro(
        id=info.get("ID", "unknown").lower() or "unknown",
        id_like=info.get("ID_LIKE", ""),
        version_id=info.get("VERSION_ID", "Unknown") or "Unknown",
        pretty_name=info.get("PRETTY_NAME", ""),
    )


def rhel_major(version_id: str, *, dry_run: bool = False) -> str:
    """EL major release, as rpm expands %rhel (falls back to VERSION_ID)."""

    r = run_cmd(["rpm", "-E", "%rhel"], check=False, dry_run=dry_run)
    v = r.stdout.strip()
    if v.isdigit():
        return v
    return version_id.split(".")[0]
