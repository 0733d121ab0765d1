from __future__ import annotations

import importlib
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from vts_bootstrap.lib.command import CmdResult, CommandError
from vts_bootstrap.state_store import ensure_defaults

# Every module that binds run_cmd by name.
RUN_CMD_MODULES = (
    "vts_bootstrap.lib.command",
    "vts_bootstrap.lib.distro",
    "vts_bootstrap.lib.pkg",
    "vts_bootstrap.lib.hwdetect",
    "vts_bootstrap.lib.systemd",
    "vts_bootstrap.steps.step_10_setup_users",
    "vts_bootstrap.steps.step_30_install_gpu_drivers",
    "vts_bootstrap.steps.step_40_install_rmm",
    "vts_bootstrap.steps.step_50_set_timezone",
    "vts_bootstrap.steps.step_60_install_docker",
    "vts_bootstrap.steps.step_70_install_rdm",
    "vts_bootstrap.steps.step_90_mark_done",
)

UBUNTU = 'NAME="Ubuntu"\nID=ubuntu\nID_LIKE=debian\nVERSION_ID="22.04"\nPRETTY_NAME="Ubuntu 22.04.4 LTS"\n'
ROCKY = 'NAME="Rocky Linux"\nID="rocky"\nID_LIKE="rhel centos fedora"\nVERSION_ID="9.3"\n'
NIXOS = 'NAME=NixOS\nID=nixos\nVERSION_ID="24.05"\n'


class FakeRunner:
    """Records argv lists and answers with canned results.

    responses: (argv prefix, returncode, stdout). First matching prefix wins.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.dry_runs: List[bool] = []
        self.responses: List[Tuple[Tuple[str, ...], int, str]] = []

    def respond(self, prefix: Sequence[str], *, returncode: int = 0, stdout: str = "") -> None:
        self.responses.append((tuple(prefix), returncode, stdout))

    def __call__(
        self, argv, *, check=True, env=None, cwd=None, input_text=None, dry_run=False, secret_input=False, timeout=None
    ):
        argv_list = list(argv)
        self.calls.append(argv_list)
        self.inputs.append(input_text)
        self.envs.append(dict(env) if env else None)
        self.dry_runs.append(dry_run)

        rc, out = 0, ""
        for prefix, code, stdout in self.responses:
            if tuple(argv_list[: len(prefix)]) == prefix:
                rc, out = code, stdout
                break
        if check and rc != 0:
            raise CommandError(argv_list, rc, "fake failure")
        return CmdResult(argv=argv_list, returncode=rc, stdout=out, stderr="")

    def ran(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.calls)

    def index(self, *prefix: str) -> int:
        for i, c in enumerate(self.calls):
            if tuple(c[: len(prefix)]) == prefix:
                return i
        raise AssertionError(f"{prefix} not run; calls={self.calls}")


@pytest.fixture
def runner(monkeypatch) -> FakeRunner:
    fake = FakeRunner()
    for name in RUN_CMD_MODULES:
        monkeypatch.setattr(importlib.import_module(name), "run_cmd", fake)
    return fake


@pytest.fixture
def available(monkeypatch):
    """Control which executables look installed: available.add('dnf')."""

    present: set = set()

    def fake_find(cmd: str) -> Optional[str]:
        return f"/usr/bin/{cmd}" if cmd in present else None

    monkeypatch.setattr("vts_bootstrap.lib.command.find_executable", fake_find)
    monkeypatch.setattr("vts_bootstrap.steps.step_60_install_docker.find_executable", fake_find)
    return present


@pytest.fixture
def make_state(tmp_path):
    def _make(os_release: str = UBUNTU, **config: Any) -> Dict[str, Any]:
        root = tmp_path / "root"
        (root / "etc").mkdir(parents=True, exist_ok=True)
        os_rel = root / "etc" / "os-release"
        os_rel.write_text(os_release, encoding="utf-8")

        paths = {
            "os_release": str(os_rel),
            "sudoers_dir": str(root / "etc" / "sudoers.d"),
            "nixos_config": str(root / "etc" / "nixos" / "configuration.nix"),
            "nixos_backup": str(root / "etc" / "nixos" / "configuration.nix.backup"),
            "home_root": str(root / "home"),
            "systemd_dir": str(root / "etc" / "systemd" / "system"),
            "lib_systemd_dir": str(root / "lib" / "systemd" / "system"),
            "modprobe_dir": str(root / "etc" / "modprobe.d"),
            "dracut_dir": str(root / "etc" / "dracut.conf.d"),
            "apt_sources_dir": str(root / "etc" / "apt" / "sources.list.d"),
            "apt_keyrings_dir": str(root / "etc" / "apt" / "keyrings"),
            "usr_share_keyrings": str(root / "usr" / "share" / "keyrings"),
            "local_bin": str(root / "usr" / "local" / "bin"),
            "zoneinfo_dir": str(root / "usr" / "share" / "zoneinfo"),
            "localtime": str(root / "etc" / "localtime"),
            "timezone_file": str(root / "etc" / "timezone"),
            "tmp_dirs": [str(root / "tmp"), str(root / "var" / "tmp")],
            "agent_conf": str(root / "etc" / "tacticalagent"),
            "agent_dir": str(root / "opt" / "tacticalagent"),
            "mesh_dir": str(root / "opt" / "tacticalmesh"),
            "mesh_tmp_dir": str(root / "tmp" / "meshtemp"),
        }
        cfg: Dict[str, Any] = {"username": "vtstestadmin", "password": "s3cret", "paths": paths}
        cfg.update(config)
        return ensure_defaults({"config": cfg})

    return _make


@pytest.fixture
def no_downloads(monkeypatch):
    fetched: List[Tuple[str, str]] = []

    def fake_download(url, dest, *, mode=None, verify_tls=True, timeout=300, dry_run=False):
        fetched.append((url, dest))
        p = Path(dest)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(b"#!/bin/sh\n")
        return dest

    for name in (
        "vts_bootstrap.steps.step_20_install_packages",
        "vts_bootstrap.steps.step_40_install_rmm",
        "vts_bootstrap.steps.step_60_install_docker",
    ):
        monkeypatch.setattr(f"{name}.download_file", fake_download)
    return fetched


def commands_run(runner: FakeRunner) -> Iterable[str]:
    return [" ".join(c) for c in runner.calls]
