from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from vts_bootstrap import main as cli
from vts_bootstrap.steps import MarkDoneStep, SetupUsersStep

from .test_rmm import RMM


@pytest.fixture
def files(tmp_path, make_state):
    """Config, state and log paths for a dry run rooted in tmp_path."""

    paths = make_state()["config"]["paths"]
    config = tmp_path / "config.yaml"
    config.write_text(
        yaml.safe_dump({"username": "vtstestadmin", "timezone": "UTC", "rmm": RMM, "paths": paths}),
        encoding="utf-8",
    )
    return {
        "config": str(config),
        "state": str(tmp_path / "state.json"),
        "log": str(tmp_path / "bootstrap.log"),
    }


@pytest.fixture
def quiet_host(monkeypatch, available):
    available.add("timedatectl")
    monkeypatch.delenv("DISPLAY", raising=False)
    monkeypatch.setattr("vts_bootstrap.steps.step_30_install_gpu_drivers.detect_gpu_vendor", lambda **kw: "Unknown")
    monkeypatch.setattr("vts_bootstrap.steps.step_70_install_rdm.detect_system_type", lambda **kw: "SERVER")


def _argv(files, *extra):
    return ["-p", "s3cret", "--config", files["config"], "--state", files["state"], "--log", files["log"], *extra]


def _saved(files):
    return json.loads(Path(files["state"]).read_text(encoding="utf-8"))


def test_module_choices():
    choices = cli.module_choices()
    assert choices[0] == "all"
    assert {"setupusers", "gpu", "packages", "rmm", "rmm-uninstall", "rdm", "settime", "docker"} <= set(choices)
    assert {"postrun", "markdone", "nvidia"} <= set(choices)


def test_all_order():
    assert [s.module for s in cli.build_steps()] == [
        "setupusers",
        "packages",
        "gpu",
        "rmm",
        "settime",
        "docker",
        "rdm",
        "postrun",
    ]


def test_password_is_required():
    with pytest.raises(SystemExit) as exc:
        cli.main(["-m", "settime"])
    assert exc.value.code == 2


def test_unknown_module_rejected(files):
    with pytest.raises(SystemExit) as exc:
        cli.main(_argv(files, "-m", "bogus", "--dry-run"))
    assert exc.value.code == 2


def test_single_module_dry_run(runner, files, quiet_host):
    assert cli.main(_argv(files, "-m", "settime", "--dry-run")) == 0

    state = _saved(files)
    assert state["execution"]["completed_steps"] == ["50_set_timezone"]
    assert state["execution"]["summary"] == {"ran_steps": ["50_set_timezone"], "skipped_steps": []}
    assert state["config"]["timezone"] == "UTC"
    assert "password" not in state["config"]
    assert "s3cret" not in Path(files["state"]).read_text(encoding="utf-8")
    assert state["host"]["distribution"] == "ubuntu"
    assert ["timedatectl", "set-timezone", "UTC"] in runner.calls


def test_single_module_runs_even_when_completed(runner, files, quiet_host):
    cli.main(_argv(files, "-m", "settime", "--dry-run"))
    runner.calls.clear()
    cli.main(_argv(files, "-m", "settime", "--dry-run"))
    assert runner.ran("timedatectl")


def test_nvidia_alias_runs_gpu(runner, files, quiet_host):
    assert cli.main(_argv(files, "-m", "nvidia", "--dry-run")) == 0
    state = _saved(files)
    assert state["execution"]["module"] == "gpu"
    assert state["execution"]["decisions"]["gpu_vendor"] == "Unknown"


def test_all_dry_run(runner, files, quiet_host, no_downloads, monkeypatch):
    monkeypatch.setattr("vts_bootstrap.steps.step_60_install_docker.user_exists", lambda name: False)
    monkeypatch.setattr("vts_bootstrap.steps.step_10_setup_users.user_exists", lambda name: False)

    assert cli.main(_argv(files, "--dry-run")) == 0

    state = _saved(files)
    assert state["execution"]["summary"]["ran_steps"] == [
        "10_setup_users",
        "20_install_packages",
        "30_install_gpu_drivers",
        "40_install_rmm",
        "50_set_timezone",
        "60_install_docker",
        "70_install_rdm",
        "80_postrun",
        "90_mark_done",
    ]
    assert state["execution"]["errors"] == []
    assert state["execution"]["decisions"]["reboot"] == "immediate"
    assert state["execution"]["decisions"]["rdm"]["reason"] == "server"


def test_failure_stops_before_markdone(runner, files, quiet_host, monkeypatch):
    def boom(self, state):
        raise RuntimeError("useradd exploded")

    marked = []
    monkeypatch.setattr(SetupUsersStep, "run", boom)
    monkeypatch.setattr(MarkDoneStep, "run", lambda self, state: marked.append(True) or state)

    assert cli.main(_argv(files, "--dry-run")) == 1

    state = _saved(files)
    assert marked == []
    assert state["execution"]["errors"] == [{"step": "10_setup_users", "error": "useradd exploded"}]
    assert state["execution"]["completed_steps"] == []


def test_resume_skips_completed(runner, files, quiet_host, monkeypatch):
    seen = []
    for cls in cli.build_steps() + [MarkDoneStep()]:
        monkeypatch.setattr(type(cls), "run", lambda self, state: seen.append(self.module) or state)

    Path(files["state"]).write_text(
        json.dumps({"execution": {"completed_steps": ["10_setup_users", "20_install_packages"]}}),
        encoding="utf-8",
    )
    assert cli.main(_argv(files, "--dry-run")) == 0
    assert seen == ["gpu", "rmm", "settime", "docker", "rdm", "postrun", "markdone"]

    seen.clear()
    assert cli.main(_argv(files, "--dry-run", "--force")) == 0
    assert seen[:2] == ["setupusers", "packages"]


def test_missing_explicit_config_fails(runner, tmp_path, quiet_host):
    argv = ["-p", "x", "--config", str(tmp_path / "nope.yaml"), "--state", str(tmp_path / "s.json")]
    argv += ["--log", str(tmp_path / "b.log"), "--dry-run"]
    assert cli.main(argv) == 1


def test_unreadable_state_is_reported_and_kept(runner, files, quiet_host, caplog):
    Path(files["state"]).write_text("{not json", encoding="utf-8")

    assert cli.main(_argv(files, "-m", "settime", "--dry-run")) == 1

    assert "Bootstrap failed!" in caplog.text
    assert "exited with an error" in caplog.text
    assert Path(files["state"]).read_text(encoding="utf-8") == "{not json"
    assert not runner.calls


def test_start_at_stop_after_window(runner, files, quiet_host, monkeypatch):
    seen = []
    for cls in cli.build_steps() + [MarkDoneStep()]:
        monkeypatch.setattr(type(cls), "run", lambda self, state: seen.append(self.module) or state)

    assert cli.main(_argv(files, "--dry-run", "--start-at", "gpu", "--stop-after", "40_install_rmm")) == 0
    assert seen == ["gpu", "rmm"]
    assert _saved(files)["execution"]["summary"]["ran_steps"] == ["30_install_gpu_drivers", "40_install_rmm"]

    seen.clear()
    assert cli.main(_argv(files, "--dry-run", "--start-at", "postrun")) == 0
    assert seen == ["postrun", "markdone"]


def test_window_flags_need_all(files):
    with pytest.raises(SystemExit) as exc:
        cli.main(_argv(files, "-m", "settime", "--start-at", "gpu", "--dry-run"))
    assert exc.value.code == 2


def test_unknown_window_bound_fails(runner, files, quiet_host):
    assert cli.main(_argv(files, "--dry-run", "--stop-after", "bogus")) == 1
    assert _saved(files)["execution"]["errors"][-1]["error"] == "Unknown step: bogus"
