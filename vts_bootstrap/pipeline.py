from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .state_store import is_step_completed, mark_step_completed

logger = logging.getLogger(__name__)


class Step(Protocol):
    """A single idempotent bootstrap module."""

    step_id: str
    module: str

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]
    skipped_steps: List[str]


def _matches(step: Step, name: Optional[str]) -> bool:
    return name is not None and name in (step.step_id, step.module)


def select_steps(
    steps: Sequence[Step],
    *,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
) -> List[Step]:
    """Slice steps to the [start_at, stop_after] window (id or module name)."""

    selected = list(steps)
    if start_at is not None:
        idx = next((i for i, s in enumerate(selected) if _matches(s, start_at)), None)
        if idx is None:
            raise ValueError(f"Unknown step: {start_at}")
        selected = selected[idx:]
    if stop_after is not None:
        idx = next((i for i, s in enumerate(selected) if _matches(s, stop_after)), None)
        if idx is None:
            raise ValueError(f"Unknown step: {stop_after}")
        selected = selected[: idx + 1]
    return selected


def run_pipeline(
    *,
    state: Dict[str, Any],
    steps: Sequence[Step],
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    force: bool = False,
) -> PipelineResult:
    """Run steps in order, skipping those already completed unless forced.

    The first failing step aborts the run; its exception propagates unchanged
    and execution.current_step keeps pointing at it.
    """

    exe = state.setdefault("execution", {})
    durations = exe.setdefault("durations", {})
    ran: List[str] = []
    skipped: List[str] = []

    for step in select_steps(steps, start_at=start_at, stop_after=stop_after):
        exe["current_step"] = step.step_id

        if not force and is_step_completed(state, step.step_id):
            logger.info("Skipping module %s (already completed)", step.module)
            skipped.append(step.step_id)
            continue

        logger.info("=== Running module: %s ===", step.module)
        t0 = time.monotonic()
        state = step.run(state)
        durations[step.step_id] = round(time.monotonic() - t0, 2)
        mark_step_completed(state, step.step_id)
        ran.append(step.step_id)

    if stop_after is not None:
        logger.info("Stopped after %s", stop_after)
    exe["current_step"] = None
    return PipelineResult(state=state, ran_steps=ran, skipped_steps=skipped)
