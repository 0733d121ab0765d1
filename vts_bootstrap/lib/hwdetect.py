"""Hardware and host detection. Every check only reads the host, so dry runs execute them too."""

from __future__ import annotations

import logging
import os
import re
import socket
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .command import command_exists, run_cmd
from .distro import Distro

logger = logging.getLogger(__name__)

_GPU_VENDOR_MAP = {
    "10de": "NVIDIA",
    "1002": "AMD",
    "8086": "Intel",
}

_DISPLAY_CLASS = re.compile(r"VGA|3D|Display")
_PCI_VENDOR = re.compile(r"\[([0-9a-fA-F]{4}):[0-9a-fA-F]{4}\]")

DISPLAY_MANAGERS = ("display-manager", "gdm", "lightdm", "sddm")
DESKTOP_SHELLS = ("gnome-shell", "plasmashell", "xfce4-session")


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip()
        return txt or None
    except OSError:
        return None


def _lspci_display_lines() -> List[str]:
    if not command_exists("lspci"):
        return []
    r = run_cmd(["lspci", "-nn"], check=False)
    return [ln for ln in r.stdout.splitlines() if _DISPLAY_CLASS.search(ln)]


def vendor_from_lspci(lines: List[str]) -> str:
    """Pick the vendor of the first recognised display controller.

    NVIDIA wins over AMD, AMD over Intel: hybrid laptops report the iGPU too.
    """

    seen = set()
    for ln in lines:
        for vid in _PCI_VENDOR.findall(ln):
            seen.add(vid.lower())
    for vid in ("10de", "1002", "8086"):
        if vid in seen:
            return _GPU_VENDOR_MAP[vid]
    return "Unknown"


def _vendor_from_sysfs(drm: Path = Path("/sys/class/drm")) -> str:
    if not drm.exists():
        return "Unknown"
    for card in sorted(drm.glob("card[0-9]*")):
        vid = _read_text(card / "device" / "vendor")
        if vid:
            name = _GPU_VENDOR_MAP.get(vid.lower().replace("0x", ""))
            if name:
                return name
    return "Unknown"


def detect_gpu_vendor() -> str:
    """Return NVIDIA, AMD, Intel or Unknown."""

    vendor = vendor_from_lspci(_lspci_display_lines())
    if vendor == "Unknown":
        vendor = _vendor_from_sysfs()
    return vendor


def is_intel_arc() -> bool:
    if not command_exists("lspci"):
        return False
    r = run_cmd(["lspci"], check=False)
    return re.search(r"Intel.*Arc", r.stdout, re.IGNORECASE) is not None


def score_system_type(
    *,
    default_target: str,
    env: Mapping[str, str],
    display_manager_active: Optional[bool],
    desktop_shell_present: bool,
) -> Dict[str, int]:
    """Count workstation vs server indicators.

    display_manager_active is None when systemctl is unavailable; the
    indicator is then not counted either way.
    """

    ws = 0
    srv = 0

    if default_target == "graphical.target":
        ws += 1
    elif default_target == "multi-user.target":
        srv += 1

    if env.get("XDG_CURRENT_DESKTOP"):
        ws += 1
    else:
        srv += 1

    session = env.get("XDG_SESSION_TYPE", "")
    if session and session != "tty":
        ws += 1
    else:
        srv += 1

    if display_manager_active is True:
        ws += 1
    elif display_manager_active is False:
        srv += 1

    # X forwarding over SSH sets DISPLAY too; only count a local display.
    if env.get("DISPLAY") and not env.get("SSH_CONNECTION"):
        ws += 1

    if desktop_shell_present:
        ws += 1

    return {"workstation": ws, "server": srv}


def detect_system_type(*, env: Optional[Mapping[str, str]] = None) -> str:
    """Return WORKSTATION or SERVER."""

    env = os.environ if env is None else env
    default_target = ""
    dm_active: Optional[bool] = None

    if command_exists("systemctl"):
        r = run_cmd(["systemctl", "get-default"], check=False)
        default_target = r.stdout.strip() if r.ok else ""
        dm_active = any(
            run_cmd(["systemctl", "is-active", "--quiet", svc], check=False).ok for svc in DISPLAY_MANAGERS
        )

    scores = score_system_type(
        default_target=default_target,
        env=env,
        display_manager_active=dm_active,
        desktop_shell_present=any(command_exists(s) for s in DESKTOP_SHELLS),
    )
    kind = "WORKSTATION" if scores["workstation"] > scores["server"] else "SERVER"
    logger.info("System type %s (workstation=%d server=%d)", kind, scores["workstation"], scores["server"])
    return kind


def parse_site_code(hostname: str) -> Dict[str, str]:
    """Split a site-coded hostname (e.g. ``lnprwe01a9u``) into its fields.

    Positions are 1-based in the naming standard: dc 1-2, env 3-4, role 5-6,
    pod 7, entity 8-9, os 10.
    """

    h = hostname

    def cut(start: int, end: int) -> str:
        return h[start - 1 : end]

    dc = cut(1, 2)
    pod = cut(7, 7)
    return {
        "dc": dc,
        "env": cut(3, 4),
        "role": cut(5, 6),
        "xy": cut(7, 8),
        "entity": cut(8, 9),
        "pod": pod,
        "os": cut(10, 10),
        "lpod": f"{dc}{pod}",
        "mrepo": f"{dc}{pod}mrepo",
    }


def _primary_ip() -> str:
    if command_exists("ip"):
        r = run_cmd(["ip", "route", "get", "1.1.1.1"], check=False)
        m = re.search(r"\bsrc\s+(\S+)", r.stdout)
        if m:
            return m.group(1)
    r = run_cmd(["hostname", "-I"], check=False)
    parts = r.stdout.split()
    return parts[0] if parts else "127.0.0.1"


def _dmi_manufacturer() -> str:
    if command_exists("dmidecode"):
        r = run_cmd(["dmidecode", "-s", "system-manufacturer"], check=False)
        if r.ok and r.stdout.strip():
            return r.stdout.strip()
    return _read_text(Path("/sys/class/dmi/id/sys_vendor")) or "Unknown"


def collect_system_info(distro: Distro) -> Dict[str, Any]:
    fqdn = socket.getfqdn() or socket.gethostname()
    hostname = socket.gethostname().split(".")[0]

    info: Dict[str, Any] = {
        "hostname": hostname,
        "fqdn": fqdn,
        "ip": _primary_ip(),
        "manufacturer": _dmi_manufacturer(),
        "distribution": distro.id,
        "os_version": distro.version_id,
        "package_manager": distro.package_manager(),
        "site": parse_site_code(hostname),
    }
    logger.info(
        "Host %s ip=%s distro=%s pm=%s version=%s",
        hostname,
        info["ip"],
        distro.id,
        info["package_manager"],
        distro.version_id,
    )
    return info
