from __future__ import annotations

import pytest

from vts_bootstrap.lib.distro import (
    Distro,
    UnsupportedDistroError,
    detect_distro,
    family_for,
    parse_os_release,
    rhel_major,
)

from .conftest import NIXOS, ROCKY, UBUNTU


def test_parse_os_release_strips_quotes_and_comments():
    info = parse_os_release("# comment\n" + ROCKY + "\nBROKEN LINE\n")
    assert info["ID"] == "rocky"
    assert info["ID_LIKE"] == "rhel centos fedora"
    assert info["VERSION_ID"] == "9.3"
    assert "BROKEN LINE" not in info


@pytest.mark.parametrize(
    "os_id,id_like,family",
    [
        ("ubuntu", "", "debian"),
        ("linuxmint", "", "debian"),
        ("pop", "ubuntu debian", "debian"),
        ("rocky", "", "rhel"),
        ("almalinux", "", "rhel"),
        ("ol", "", "rhel"),
        ("nobara", "fedora", "rhel"),
        ("nixos", "", "nixos"),
    ],
)
def test_family_for(os_id, id_like, family):
    assert family_for(os_id, id_like) == family


def test_family_for_unknown_raises():
    with pytest.raises(UnsupportedDistroError, match="Unsupported OS: arch"):
        family_for("arch", "")


def test_detect_distro(tmp_path):
    p = tmp_path / "os-release"
    p.write_text(UBUNTU, encoding="utf-8")
    d = detect_distro(str(p))
    assert d.id == "ubuntu"
    assert d.version_id == "22.04"
    assert d.is_debian and not d.is_rhel and not d.is_nixos
    assert d.package_manager() == "apt"


def test_detect_distro_missing_file(tmp_path):
    d = detect_distro(str(tmp_path / "nope"))
    assert d.id == "unknown"
    assert d.version_id == "Unknown"
    assert not d.is_debian and not d.is_rhel


def test_rhel_prefers_dnf(available):
    d = Distro(id="rocky", id_like="", version_id="9.3", pretty_name="")
    assert d.package_manager() == "yum"
    available.add("dnf")
    assert d.package_manager() == "dnf"


def test_nixos_uses_nix(tmp_path):
    p = tmp_path / "os-release"
    p.write_text(NIXOS, encoding="utf-8")
    d = detect_distro(str(p))
    assert d.is_nixos
    assert d.package_manager() == "nix"


def test_unknown_distro_scans_for_a_package_manager(available):
    d = Distro(id="gentoo", id_like="", version_id="2.15", pretty_name="")
    assert d.package_manager() == "unknown"
    available.add("yum")
    assert d.package_manager() == "yum"


def test_rhel_major_from_rpm(runner):
    runner.respond(["rpm", "-E"], stdout="8\n")
    assert rhel_major("8.9") == "8"


def test_rhel_major_falls_back_to_version_id(runner):
    runner.respond(["rpm", "-E"], stdout="%rhel\n")
    assert rhel_major("9.3") == "9"
