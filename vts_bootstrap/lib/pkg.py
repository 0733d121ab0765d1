from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .command import CommandError, command_exists, run_cmd

logger = logging.getLogger(__name__)

APT_LOCKS = (
    "/var/lib/dpkg/lock",
    "/var/lib/dpkg/lock-frontend",
    "/var/lib/apt/lists/lock",
)
NIX_LOCK = "/nix/var/nix/db/big-lock"

LOCK_MAX_WAIT_S = 300
LOCK_POLL_S = 5

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

# (package, os-release ID) -> distro specific name
_NAME_MAP = {
    ("build-essential", "rhel"): "@development-tools",
    ("build-essential", "rocky"): "@development-tools",
    ("build-essential", "centos"): "@development-tools",
    ("build-essential", "nixos"): "stdenv",
    ("g++", "rhel"): "gcc-c++",
    ("g++", "rocky"): "gcc-c++",
    ("g++", "centos"): "gcc-c++",
    ("g++", "nixos"): "gcc",
    ("libssl-dev", "rhel"): "openssl-devel",
    ("libssl-dev", "rocky"): "openssl-devel",
    ("libssl-dev", "centos"): "openssl-devel",
    ("libssl-dev", "nixos"): "openssl",
    ("net-tools", "nixos"): "nettools",
}


class PackageLockTimeout(RuntimeError):
    pass


def map_package_name(pkg: str, distro_id: str) -> str:
    """Translate a Debian-style package name for the given distribution."""

    return _NAME_MAP.get((pkg, distro_id.lower()), pkg)


class PackageManager:
    """Thin dispatch over apt / dnf / yum / nix-env."""

    SUPPORTED = ("apt", "dnf", "yum", "nix")

    def __init__(
        self,
        name: str,
        *,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        max_wait_s: int = LOCK_MAX_WAIT_S,
        poll_s: int = LOCK_POLL_S,
    ) -> None:
        if name not in self.SUPPORTED:
            raise RuntimeError(f"Unknown package manager: {name}")
        self.name = name
        self.dry_run = dry_run
        self._sleep = sleep
        self.max_wait_s = max_wait_s
        self.poll_s = poll_s

    def __repr__(self) -> str:
        return f"PackageManager({self.name!r})"

    # -- locking ---------------------------------------------------------

    def _locked(self) -> bool:
        if self.dry_run:
            return False
        if self.name == "apt":
            return any(run_cmd(["fuser", lock], check=False).ok for lock in APT_LOCKS)
        if self.name in ("dnf", "yum"):
            return any(run_cmd(["pgrep", "-x", proc], check=False).ok for proc in ("dnf", "yum"))
        return Path(NIX_LOCK).exists()

    def wait_for_lock(self) -> None:
        waited = 0
        while self._locked():
            if waited >= self.max_wait_s:
                raise PackageLockTimeout(f"Package manager lock timeout ({self.name})")
            logger.info("Waiting for %s lock...", self.name)
            self._sleep(self.poll_s)
            waited += self.poll_s

    # -- operations ------------------------------------------------------

    def _run(self, argv: Sequence[str], *, check: bool = True):
        env = APT_ENV if self.name == "apt" else None
        return run_cmd(argv, check=check, env=env, dry_run=self.dry_run)

    def install(self, *packages: str) -> None:
        pkgs = [p for p in packages if p]
        if not pkgs:
            return
        self.wait_for_lock()

        if self.name == "apt":
            self._run(["apt-get", "update", "-qq"])
            self._run(["apt-get", "install", "-y", *pkgs])
        elif self.name in ("dnf", "yum"):
            self._run([self.name, "install", "-y", *pkgs])
        else:
            logger.info("Note: package installation on NixOS is better done in configuration.nix")
            for p in pkgs:
                if command_exists(p):
                    continue
                r = self._run(["nix-env", "-iA", f"nixpkgs.{p}"], check=False)
                if not r.ok:
                    logger.warning("Failed to install %s", p)

    def try_install(self, *packages: str) -> bool:
        try:
            self.install(*packages)
            return True
        except CommandError as e:
            logger.warning("Failed to install %s: %s", " ".join(packages), e.stderr.strip() or e)
            return False

    def install_each(self, packages: Iterable[str]) -> list[str]:
        """Install packages one at a time; return the ones that failed."""

        failed: list[str] = []
        for p in packages:
            if p and not self.try_install(p):
                failed.append(p)
        return failed

    def nix_install_attrs(self, attrs: Sequence[str]) -> bool:
        r = run_cmd(["nix-env", "-iA", *[f"nixpkgs.{a}" for a in attrs]], check=False, dry_run=self.dry_run)
        if not r.ok:
            logger.warning("Some packages may not be available via nix-env: %s", " ".join(attrs))
        return r.ok

    def update_system(self) -> None:
        self.wait_for_lock()
        if self.name == "apt":
            self._run(["apt-get", "update", "-qq"])
            self._run(["apt-get", "upgrade", "-y"])
        elif self.name in ("dnf", "yum"):
            self._run([self.name, "update", "-y"])
        else:
            self._run(["nix-channel", "--update"])
            self._run(["nix-env", "-u", "*"])

    def remove(self, *packages: str, check: bool = False) -> None:
        if not packages:
            return
        self.wait_for_lock()
        if self.name == "apt":
            self._run(["apt-get", "remove", "-y", *packages], check=check)
        elif self.name in ("dnf", "yum"):
            self._run([self.name, "remove", "-y", *packages], check=check)
        else:
            self._run(["nix-env", "-e", *packages], check=check)

    def add_repo(self, url: str) -> None:
        if self.name == "dnf":
            self._run(["dnf", "config-manager", f"--add-repo={url}"])
        elif self.name == "yum":
            self._run(["yum-config-manager", f"--add-repo={url}"])
        else:
            raise RuntimeError(f"add_repo is not supported for {self.name}")

    def enable_repo(self, *candidates: str) -> bool:
        """Enable the first repo id that exists (e.g. crb, then powertools)."""

        if self.name != "dnf":
            return False
        for repo in candidates:
            if self._run(["dnf", "config-manager", "--set-enabled", repo], check=False).ok:
                return True
        logger.warning("Could not enable any of: %s", ", ".join(candidates))
        return False

    def is_installed(self, package: str) -> bool:
        if self.dry_run:
            return False
        if self.name == "apt":
            return run_cmd(["dpkg", "-s", package], check=False).ok
        if self.name in ("dnf", "yum"):
            return run_cmd(["rpm", "-q", package], check=False).ok
        return command_exists(package)

    def clean(self) -> None:
        if self.name == "apt":
            self._run(["apt-get", "clean"])
            self._run(["apt-get", "autoclean"])
            self._run(["apt-get", "autoremove", "-y"])
        elif self.name == "dnf":
            self._run(["dnf", "clean", "all"])
        elif self.name == "yum":
            self._run(["yum", "clean", "all"])
            if not self.dry_run:
                shutil.rmtree("/var/cache/yum", ignore_errors=True)
        else:
            self._run(["nix-collect-garbage", "-d"])
