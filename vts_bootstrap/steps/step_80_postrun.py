from __future__ import annotations

import logging
from typing import Any, Dict

from ..context import HostCtx
from ..lib.command import CommandError
from ..lib.files import empty_dir
from ..state_store import record_warning

logger = logging.getLogger(__name__)


class PostRunStep:
    step_id = "80_postrun"
    module = "postrun"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ctx = HostCtx.from_state(state)
        logger.info("Performing post-run cleanup...")

        try:
            ctx.pkg.clean()
        except CommandError as e:
            logger.warning("Package cache cleanup failed: %s", e)
            record_warning(state, {"postrun": "cache_cleanup_failed"})

        removed = 0
        for d in ctx.paths.tmp_dirs:
            removed += empty_dir(d, dry_run=ctx.dry_run)

        logger.info("Post-run cleanup completed (%d temp entries removed).", removed)
        return state
