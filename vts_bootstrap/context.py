from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any, Dict

from .config import BootstrapConfig
from .lib.distro import Distro, detect_distro
from .lib.env import Paths, paths_from_state
from .lib.pkg import PackageManager


@dataclass(frozen=True)
class HostCtx:
    """Per-step view of the host: config, paths, distro, package manager."""

    cfg: BootstrapConfig
    paths: Paths
    distro: Distro
    password: str

    @classmethod
    def from_state(cls, state: Dict[str, Any]) -> "HostCtx":
        raw = state.get("config") or {}
        paths = paths_from_state(state)
        return cls(
            cfg=BootstrapConfig(raw=raw),
            paths=paths,
            distro=detect_distro(paths.os_release),
            password=str(raw.get("password") or ""),
        )

    @property
    def dry_run(self) -> bool:
        return self.cfg.dry_run

    @property
    def username(self) -> str:
        return self.cfg.username

    @cached_property
    def pkg(self) -> PackageManager:
        return PackageManager(self.distro.package_manager(), dry_run=self.dry_run)
