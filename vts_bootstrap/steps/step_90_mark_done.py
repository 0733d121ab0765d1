from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict

from ..context import HostCtx
from ..lib.command import command_exists, run_cmd
from ..lib.hwdetect import collect_system_info, detect_gpu_vendor, detect_system_type
from ..lib.mail import SmtpSettings, send_email
from ..state_store import record_decision, record_warning

logger = logging.getLogger(__name__)

REBOOT_MESSAGE = "Bootstrap completed. System rebooting..."


def completion_report(
    *,
    host: Dict[str, Any],
    username: str,
    system_type: str,
    gpu_vendor: str,
    when: datetime,
) -> tuple[str, str]:
    """Return (subject, body) of the completion notification."""

    subject = f"Bootstrap Complete: {host.get('hostname', 'unknown')}"
    lines = [
        "Bootstrap script completed successfully.",
        "",
        f"Host: {host.get('hostname', 'unknown')}",
        f"IP: {host.get('ip', 'unknown')}",
        f"Date: {when.strftime('%a %b %d %H:%M:%S %Y')}",
        f"Distribution: {host.get('distribution', 'unknown')}",
        f"Package Manager: {host.get('package_manager', 'unknown')}",
        f"OS Version: {host.get('os_version', 'Unknown')}",
        f"System Type: {system_type}",
        f"GPU Vendor: {gpu_vendor}",
        "",
        "Installed Components:",
        f"- User: {username} (with sudo access)",
        "- Packages: System utilities and dependencies",
        f"- GPU Drivers: {gpu_vendor} drivers installed/configured",
        "- RMM Agent: Tactical RMM agent installed",
        "- Docker: Container runtime installed",
    ]
    if system_type == "WORKSTATION":
        lines.append("- Remote Desktop Manager: Devolutions RDM installed")
    lines += ["", "The system will reboot in 30 seconds.", ""]
    return subject, "\n".join(lines)


class MarkDoneStep:
    step_id = "90_mark_done"
    module = "markdone"

    def _reboot(self, ctx: HostCtx) -> str:
        if not ctx.cfg.reboot:
            logger.info("Reboot disabled by configuration")
            return "disabled"
        if ctx.distro.is_nixos:
            logger.info("Please reboot manually after running: nixos-rebuild switch")
            return "manual"

        logger.info("System will reboot shortly...")
        if command_exists("shutdown"):
            run_cmd(["shutdown", "-r", "+1", REBOOT_MESSAGE], dry_run=ctx.dry_run)
            return "scheduled"
        if not ctx.dry_run:
            time.sleep(30)
        run_cmd(["reboot"], dry_run=ctx.dry_run)
        return "immediate"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        logger.info("Bootstrap process completed. Sending notification...")

        host = state.get("host") or {}
        if not host:
            host = collect_system_info(ctx.distro)
            state["host"] = host

        decisions = (state.get("execution") or {}).get("decisions") or {}
        system_type = decisions.get("system_type") or detect_system_type()
        gpu_vendor = decisions.get("gpu_vendor") or detect_gpu_vendor()

        subject, body = completion_report(
            host=host,
            username=ctx.username,
            system_type=system_type,
            gpu_vendor=gpu_vendor,
            when=datetime.now(),
        )

        settings = SmtpSettings.from_config(ctx.cfg.smtp, ctx.password)
        try:
            send_email(settings, subject, body, dry_run=ctx.dry_run)
            record_decision(state, "notification", "sent")
        except Exception as e:
            # Notification is best-effort; the reboot still happens.
            logger.warning("Could not send completion notification: %s", e)
            record_warning(state, {"notification": str(e)})
            record_decision(state, "notification", "failed")

        record_decision(state, "reboot", self._reboot(ctx))
        return state
