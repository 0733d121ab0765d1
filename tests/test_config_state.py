from __future__ import annotations

import json
import os
import stat

import pytest

from vts_bootstrap.config import BootstrapConfig, ConfigError, load_config_file, overlay
from vts_bootstrap.lib.env import PATHS, paths_from_state
from vts_bootstrap.state_store import (
    ensure_defaults,
    is_step_completed,
    load_state,
    mark_step_completed,
    redact,
    save_state,
)


def test_defaults_are_filled_without_overriding():
    state = ensure_defaults({"config": {"username": "ops", "smtp": {"port": 25}}})
    cfg = state["config"]
    assert cfg["username"] == "ops"
    assert cfg["smtp"]["port"] == 25
    assert cfg["smtp"]["server"] == "smtp.office365.com"
    assert cfg["timezone"] == "Europe/London"
    assert state["execution"]["completed_steps"] == []


def test_load_config_file(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text("timezone: UTC\nrmm:\n  token: abc\n", encoding="utf-8")
    assert load_config_file(str(p)) == {"timezone": "UTC", "rmm": {"token": "abc"}}


def test_load_config_file_missing(tmp_path):
    assert load_config_file(str(tmp_path / "absent.yaml")) == {}
    with pytest.raises(FileNotFoundError):
        load_config_file(str(tmp_path / "absent.yaml"), required=True)


def test_load_config_file_rejects_non_mapping(tmp_path):
    p = tmp_path / "config.yml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config_file(str(p))


def test_load_config_file_rejects_other_formats(tmp_path):
    p = tmp_path / "config.toml"
    p.write_text("x = 1\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="YAML"):
        load_config_file(str(p))


def test_overlay_merges_nested_sections():
    target = ensure_defaults({})["config"]
    overlay(target, {"rmm": {"token": "t0k3n"}, "ssh_authorized_keys": ["ssh-ed25519 AAAA x"]})
    assert target["rmm"]["token"] == "t0k3n"
    assert target["rmm"]["agent_type"] == "server"
    assert target["ssh_authorized_keys"] == ["ssh-ed25519 AAAA x"]


def test_bootstrap_config_accessors():
    raw = ensure_defaults({"config": {"ssh_authorized_keys": "ssh-rsa AAAA one", "packages": {"oh_my_posh": True}}})[
        "config"
    ]
    cfg = BootstrapConfig(raw=raw)
    assert cfg.ssh_keys == ["ssh-rsa AAAA one"]
    assert cfg.oh_my_posh_url.endswith("posh-linux-amd64")
    assert cfg.compose_version == "v2.23.0"
    assert cfg.reboot is True
    with pytest.raises(ConfigError, match="rmm.token"):
        cfg.rmm_required("token")


def test_bootstrap_config_validates_types():
    cfg = BootstrapConfig(raw={"packages": {"extra": "jq"}, "ssh_authorized_keys": 5})
    with pytest.raises(ConfigError):
        cfg.extra_packages
    with pytest.raises(ConfigError):
        cfg.ssh_keys


def test_paths_from_state_overrides():
    assert paths_from_state({}) is PATHS
    p = paths_from_state({"config": {"paths": {"home_root": "/srv/home", "tmp_dirs": ["/x"], "bogus": 1}}})
    assert p.home_root == "/srv/home"
    assert p.tmp_dirs == ("/x",)
    assert p.sudoers_dir == PATHS.sudoers_dir


def test_password_is_never_saved(tmp_path):
    state = ensure_defaults({"config": {"password": "hunter2"}})
    path = tmp_path / "state" / "state.json"
    save_state(str(path), state)

    assert "hunter2" not in path.read_text(encoding="utf-8")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert state["config"]["password"] == "hunter2"
    assert "password" not in redact(state)["config"]


def test_state_file_is_private_before_any_write(tmp_path, monkeypatch):
    path = tmp_path / "state.json"
    stale = tmp_path / "state.json.tmp"
    stale.write_text("left over")
    stale.chmod(0o644)

    modes = []
    real_fdopen = os.fdopen

    def spy(fd, *args, **kwargs):
        modes.append(stat.S_IMODE(os.fstat(fd).st_mode))
        return real_fdopen(fd, *args, **kwargs)

    monkeypatch.setattr(os, "fdopen", spy)
    old_umask = os.umask(0)
    try:
        save_state(str(path), ensure_defaults({"rmm": {"token": "deadbeef"}}))
    finally:
        os.umask(old_umask)

    assert modes == [0o600]
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert not stale.exists()


def test_state_roundtrip_yaml(tmp_path):
    state = ensure_defaults({})
    mark_step_completed(state, "10_setup_users")
    mark_step_completed(state, "10_setup_users")
    path = tmp_path / "state.yaml"
    save_state(str(path), state)

    loaded = load_state(str(path))
    assert loaded["execution"]["completed_steps"] == ["10_setup_users"]
    assert is_step_completed(loaded, "10_setup_users")
    assert not is_step_completed(loaded, "20_install_packages")


def test_load_state_rejects_non_object(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps([1, 2]), encoding="utf-8")
    with pytest.raises(ValueError):
        load_state(str(path))
    assert load_state(str(tmp_path / "missing.json")) == {}
