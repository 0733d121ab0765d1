from __future__ import annotations

import argparse
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import load_config_file, overlay
from .lib.distro import detect_distro
from .lib.env import PATHS, paths_from_state
from .lib.hwdetect import collect_system_info
from .lib.systemd import check_systemd
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import Step, run_pipeline
from .state_store import ensure_defaults, load_state, save_state
from .steps import (
    InstallDockerStep,
    InstallGpuDriversStep,
    InstallPackagesStep,
    InstallRdmStep,
    InstallRmmStep,
    MarkDoneStep,
    PostRunStep,
    SetTimezoneStep,
    SetupUsersStep,
    UninstallRmmStep,
)

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = PATHS.state_default
DEFAULT_CONFIG_PATH = PATHS.config_default

MODULE_HELP = """modules:
  setupusers     create the admin user and configure sudo access
  gpu            detect and install GPU drivers (NVIDIA/AMD/Intel); alias: nvidia
  packages       install system packages
  rmm            install the Tactical RMM agent (and mesh agent)
  rmm-uninstall  remove the RMM and mesh agents
  rdm            install Devolutions Remote Desktop Manager (workstations only)
  settime        configure the timezone
  docker         install Docker
  postrun        cleanup and optimization
  markdone       send the completion notification and reboot
  all            every module above except rmm-uninstall, markdone last
"""

ALIASES = {"nvidia": "gpu"}


def build_steps() -> List[Step]:
    """Modules run by `all`, in order. markdone runs only after they all pass."""

    return [
        SetupUsersStep(),
        InstallPackagesStep(),
        InstallGpuDriversStep(),
        InstallRmmStep(),
        SetTimezoneStep(),
        InstallDockerStep(),
        InstallRdmStep(),
        PostRunStep(),
    ]


def module_steps() -> Dict[str, Step]:
    steps: List[Step] = [*build_steps(), UninstallRmmStep(), MarkDoneStep()]
    return {s.module: s for s in steps}


def module_choices() -> List[str]:
    return ["all", *module_steps().keys(), *ALIASES.keys()]


def _apply_config(state: Dict[str, Any], *, config_path: str, password: str, dry_run: bool) -> None:
    file_cfg = load_config_file(config_path, required=config_path != DEFAULT_CONFIG_PATH)
    overlay(state["config"], file_cfg)
    ensure_defaults(state)
    state["config"]["dry_run"] = dry_run
    state["config"]["password"] = password


def _preflight(state: Dict[str, Any]) -> None:
    paths = paths_from_state(state)
    distro = detect_distro(paths.os_release)
    dry_run = bool(state["config"].get("dry_run"))

    if not dry_run and not check_systemd(is_nixos=distro.is_nixos):
        raise RuntimeError("System requirements not met")

    host = collect_system_info(distro)
    state["host"] = host

    logger.info("System Information:")
    logger.info("  Hostname: %s", host["hostname"])
    logger.info("  IP: %s", host["ip"])
    logger.info("  Distribution: %s", host["distribution"])
    logger.info("  Package Manager: %s", host["package_manager"])
    logger.info("  OS Version: %s", host["os_version"])


def run(
    *,
    password: str,
    module: str = "all",
    config_path: str = DEFAULT_CONFIG_PATH,
    state_path: str = DEFAULT_STATE_PATH,
    log_path: str = DEFAULT_LOG_PATH,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    dry_run: bool = False,
    force: bool = False,
) -> Dict[str, Any]:
    """Run one module (or all of them), persisting state for resume.

    A state file that cannot be read is reported and left as it is.
    """

    actual_log_path = configure_logging(log_path=log_path)
    logger.info("=== Bootstrap started at %s ===", datetime.now().isoformat(timespec="seconds"))

    module = ALIASES.get(module, module)
    state: Dict[str, Any] = {"execution": {}}
    loaded = False

    try:
        state = ensure_defaults(load_state(state_path))
        loaded = True
        state["execution"]["paths"] = {"log_path_requested": log_path, "log_path_actual": actual_log_path}
        state["execution"]["module"] = module

        _apply_config(state, config_path=config_path, password=password, dry_run=dry_run)
        _preflight(state)

        if module == "all":
            logger.info("Starting full bootstrap process...")
            result = run_pipeline(
                state=state,
                steps=build_steps(),
                start_at=start_at,
                stop_after=stop_after,
                force=force,
            )
            ran, skipped, state = result.ran_steps, result.skipped_steps, result.state
            if stop_after is None:
                logger.info("All modules completed successfully.")
                final = run_pipeline(state=state, steps=[MarkDoneStep()], force=True)
                ran, state = ran + final.ran_steps, final.state
            else:
                logger.info("Partial run; markdone not attempted")
        else:
            steps = module_steps()
            if module not in steps:
                raise RuntimeError(f"Unknown module: {module}")
            # An explicitly requested module always runs.
            result = run_pipeline(state=state, steps=[steps[module]], force=True)
            ran, skipped, state = result.ran_steps, result.skipped_steps, result.state

        state["execution"]["summary"] = {"ran_steps": ran, "skipped_steps": skipped}
        logger.info("=== Bootstrap completed at %s ===", datetime.now().isoformat(timespec="seconds"))
        return state
    except Exception as e:
        logger.exception("Bootstrap failed!")
        state.setdefault("execution", {}).setdefault("errors", []).append(
            {
                "step": (state.get("execution") or {}).get("current_step"),
                "error": str(e),
            }
        )
        raise
    finally:
        if loaded:
            save_state(state_path, state)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="vts-bootstrap",
        description="Bootstrap a freshly provisioned Linux host.",
        epilog=MODULE_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-p", "--password", required=True, help="Password for SMTP relay and user setup")
    p.add_argument("-m", "--module", default="all", choices=module_choices(), metavar="MODULE", help="Run a single module")
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to YAML config")
    p.add_argument("--state", default=DEFAULT_STATE_PATH, help="Path to bootstrap state (json|yaml)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to bootstrap log")
    p.add_argument("--start-at", default=None, help="With -m all: start at a module (e.g. gpu or 30_install_gpu_drivers)")
    p.add_argument("--stop-after", default=None, help="With -m all: stop after a module; markdone is skipped")
    p.add_argument("--dry-run", action="store_true", help="Log commands without executing them")
    p.add_argument("--force", action="store_true", help="Re-run modules even if marked completed")

    args = p.parse_args(argv)

    if not args.password:
        p.error("Password is required")

    if args.module != "all" and (args.start_at or args.stop_after):
        p.error("--start-at/--stop-after only apply to -m all")

    if os.geteuid() != 0 and not args.dry_run:
        p.exit(1, "ERROR: This script must be run as root\n")

    try:
        run(
            password=args.password,
            module=args.module,
            config_path=args.config,
            state_path=args.state,
            log_path=args.log,
            start_at=args.start_at,
            stop_after=args.stop_after,
            dry_run=bool(args.dry_run),
            force=bool(args.force),
        )
    except Exception as e:
        logger.error("vts-bootstrap exited with an error: %s", e)
        return 1
    return 0
