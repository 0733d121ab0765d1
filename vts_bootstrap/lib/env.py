from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict


@dataclass(frozen=True)
class Paths:
    os_release: str = "/etc/os-release"
    state_default: str = "/var/lib/vts-bootstrap/state.json"
    log_default: str = "/var/log/vts-bootstrap.log"
    config_default: str = "/etc/vts-bootstrap/config.yaml"
    sudoers_dir: str = "/etc/sudoers.d"
    nixos_config: str = "/etc/nixos/configuration.nix"
    nixos_backup: str = "/etc/nixos/configuration.nix.backup"
    home_root: str = "/home"
    systemd_dir: str = "/etc/systemd/system"
    lib_systemd_dir: str = "/lib/systemd/system"
    modprobe_dir: str = "/etc/modprobe.d"
    dracut_dir: str = "/etc/dracut.conf.d"
    apt_sources_dir: str = "/etc/apt/sources.list.d"
    apt_keyrings_dir: str = "/etc/apt/keyrings"
    usr_share_keyrings: str = "/usr/share/keyrings"
    local_bin: str = "/usr/local/bin"
    zoneinfo_dir: str = "/usr/share/zoneinfo"
    localtime: str = "/etc/localtime"
    timezone_file: str = "/etc/timezone"
    tmp_dirs: tuple = ("/tmp", "/var/tmp")
    agent_conf: str = "/etc/tacticalagent"
    agent_dir: str = "/opt/tacticalagent"
    mesh_dir: str = "/opt/tacticalmesh"
    mesh_tmp_dir: str = "/tmp/meshtemp"


PATHS = Paths()


def paths_from_state(state: Dict[str, Any]) -> Paths:
    """Return PATHS with any overrides from state['config']['paths'] applied."""

    overrides = ((state.get("config") or {}).get("paths")) or {}
    known = {f.name for f in fields(Paths)}
    clean: Dict[str, Any] = {}
    for k, v in overrides.items():
        if k not in known:
            continue
        clean[k] = tuple(v) if k == "tmp_dirs" else str(v)
    return replace(PATHS, **clean) if clean else PATHS
