from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..context import HostCtx
from ..lib import nixos
from ..lib.command import command_exists, run_cmd
from ..lib.files import write_file
from ..state_store import record_decision

logger = logging.getLogger(__name__)


class SetTimezoneStep:
    step_id = "50_set_timezone"
    module = "settime"

    def _link_localtime(self, ctx: HostCtx, tz: str) -> None:
        zone = Path(ctx.paths.zoneinfo_dir) / tz
        if not zone.exists():
            raise RuntimeError(f"Unknown timezone: {tz}")
        localtime = Path(ctx.paths.localtime)
        if ctx.dry_run:
            logger.info("Would link %s -> %s", str(localtime), str(zone))
        else:
            if localtime.exists() or localtime.is_symlink():
                localtime.unlink()
            localtime.symlink_to(zone)
        write_file(ctx.paths.timezone_file, tz + "\n", dry_run=ctx.dry_run)

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        tz = ctx.cfg.timezone
        logger.info("Setting timezone to %s...", tz)

        if ctx.distro.is_nixos:
            nixos.advise("timezone", nixos.timezone_block(tz))
        elif command_exists("timedatectl"):
            run_cmd(["timedatectl", "set-timezone", tz], dry_run=ctx.dry_run)
        else:
            self._link_localtime(ctx, tz)

        record_decision(state, "timezone", tz)
        logger.info("Timezone configuration completed.")
        return state
