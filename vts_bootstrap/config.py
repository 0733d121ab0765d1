from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


class ConfigError(RuntimeError):
    pass


DEFAULT_CONFIG: Dict[str, Any] = {
    "username": "rootasp",
    "ssh_authorized_keys": [],
    "timezone": "Europe/London",
    "reboot": True,
    "dry_run": False,
    "smtp": {
        "server": "smtp.office365.com",
        "port": 587,
        "user": "SMTP_relay@vitalytics.co.uk",
        "recipient": "support@vitalytics.co.uk",
        "verify_tls": False,
    },
    "rmm": {
        "agent_url": None,
        "mesh_url": None,
        "api_url": None,
        "token": None,
        "client_id": None,
        "site_id": None,
        "agent_type": "server",
        "proxy": "",
        "nomesh": False,
        "debug": False,
        "insecure": False,
    },
    "packages": {
        "extra": [],
        "mainline_kernel": True,
        "oh_my_posh": False,
        "oh_my_posh_url": "https://github.com/JanDeDobbeleer/oh-my-posh/releases/latest/download/posh-linux-amd64",
    },
    "docker": {
        "compose_version": "v2.23.0",
    },
    "rdm": {
        "force": False,
    },
}


def merge_defaults(target: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively fill missing keys of target from defaults (in place)."""

    for k, v in defaults.items():
        if k not in target:
            target[k] = copy.deepcopy(v)
        elif isinstance(v, dict) and isinstance(target[k], dict):
            merge_defaults(target[k], v)
    return target


def load_config_file(path: str, *, required: bool = False) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        if required:
            raise FileNotFoundError(path)
        return {}

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError(f"config must be YAML: {path}")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping/object")
    return raw


@dataclass(frozen=True)
class BootstrapConfig:
    raw: Dict[str, Any]

    def _section(self, name: str) -> Dict[str, Any]:
        return self.raw.get(name) or {}

    @property
    def dry_run(self) -> bool:
        return bool(self.raw.get("dry_run", False))

    @property
    def username(self) -> str:
        return str(self.raw.get("username") or "rootasp")

    @property
    def ssh_keys(self) -> List[str]:
        keys = self.raw.get("ssh_authorized_keys") or []
        if isinstance(keys, str):
            keys = [keys]
        if not isinstance(keys, list):
            raise ConfigError("config.ssh_authorized_keys must be a list of strings")
        return [str(k).strip() for k in keys if str(k).strip()]

    @property
    def timezone(self) -> str:
        return str(self.raw.get("timezone") or "Europe/London")

    @property
    def reboot(self) -> bool:
        return bool(self.raw.get("reboot", True))

    @property
    def smtp(self) -> Dict[str, Any]:
        return self._section("smtp")

    @property
    def rmm(self) -> Dict[str, Any]:
        return self._section("rmm")

    def rmm_required(self, key: str) -> str:
        value = self.rmm.get(key)
        if value in (None, ""):
            raise ConfigError(f"rmm.{key} is not configured")
        return str(value)

    @property
    def extra_packages(self) -> List[str]:
        extra = self._section("packages").get("extra") or []
        if not isinstance(extra, list):
            raise ConfigError("packages.extra must be a list")
        return [str(p) for p in extra]

    @property
    def mainline_kernel(self) -> bool:
        return bool(self._section("packages").get("mainline_kernel", True))

    @property
    def oh_my_posh_url(self) -> Optional[str]:
        pk = self._section("packages")
        if not pk.get("oh_my_posh"):
            return None
        return str(pk.get("oh_my_posh_url"))

    @property
    def compose_version(self) -> str:
        return str(self._section("docker").get("compose_version") or "v2.23.0")

    @property
    def force_rdm(self) -> bool:
        return bool(self._section("rdm").get("force", False))


def overlay(target: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively copy src over target (in place); src wins."""

    for k, v in src.items():
        if isinstance(v, dict) and isinstance(target.get(k), dict):
            overlay(target[k], v)
        else:
            target[k] = copy.deepcopy(v)
    return target
