from __future__ import annotations

from vts_bootstrap.lib import nixos
from vts_bootstrap.lib.files import backup_file, empty_dir, remove_path, write_file
from vts_bootstrap.lib.systemd import render_unit


def test_write_file_mode(tmp_path):
    p = tmp_path / "sub" / "f"
    write_file(str(p), "x\n", mode=0o440)
    assert p.read_text() == "x\n"
    assert (p.stat().st_mode & 0o777) == 0o440


def test_dry_run_writes_nothing(tmp_path):
    p = tmp_path / "f"
    write_file(str(p), "x", dry_run=True)
    assert not p.exists()


def test_remove_path_and_empty_dir(tmp_path):
    d = tmp_path / "tmp"
    (d / "nested").mkdir(parents=True)
    (d / "nested" / "a").write_text("a")
    (d / "b").write_text("b")

    assert empty_dir(str(d), dry_run=True) == 0
    assert empty_dir(str(d)) == 2
    assert d.is_dir() and list(d.iterdir()) == []
    assert empty_dir(str(tmp_path / "missing")) == 0

    remove_path(str(d))
    assert not d.exists()
    remove_path(str(d))


def test_backup_file(tmp_path):
    src = tmp_path / "a"
    assert backup_file(str(src), str(tmp_path / "a.bak")) is False
    src.write_text("v1")
    assert backup_file(str(src), str(tmp_path / "a.bak")) is True
    assert (tmp_path / "a.bak").read_text() == "v1"


def test_user_block():
    block = nixos.user_block("rootasp", password_hash="$6$abc", ssh_keys=["ssh-ed25519 AAAA k"])
    assert block.startswith("users.users.rootasp = {")
    assert 'hashedPassword = "$6$abc";' in block
    assert '"ssh-ed25519 AAAA k"' in block
    assert "hashedPassword" not in nixos.user_block("rootasp")


def test_append_block_backs_up_once(tmp_path):
    cfg = tmp_path / "configuration.nix"
    bak = tmp_path / "configuration.nix.backup"
    cfg.write_text("{ config, pkgs, ... }:\n{\n  users.mutableUsers = false;\n}\n")
    original = cfg.read_text()

    assert nixos.has_immutable_users(str(cfg))
    nixos.append_block(str(cfg), "Timezone", nixos.timezone_block("UTC"), backup_path=str(bak))
    nixos.append_block(str(cfg), "Docker", nixos.docker_block("rootasp"), backup_path=str(bak))

    assert bak.read_text() == original
    text = cfg.read_text()
    assert f"# Timezone ({nixos.MARKER})" in text
    assert 'time.timeZone = "UTC";' in text
    assert "virtualisation.docker = {" in text


def test_has_immutable_users_missing(tmp_path):
    assert nixos.has_immutable_users(str(tmp_path / "nope.nix")) is False


def test_packages_block():
    assert nixos.packages_block(["vim", "git"]) == "environment.systemPackages = with pkgs; [\n  vim\n  git\n];"


def test_render_unit():
    text = render_unit([("Unit", {"Description": "x"}), ("Install", {"WantedBy": "multi-user.target"})])
    assert text == "[Unit]\nDescription=x\n\n[Install]\nWantedBy=multi-user.target\n"
