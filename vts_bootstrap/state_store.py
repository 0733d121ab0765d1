from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Tuple

import yaml

from .config import DEFAULT_CONFIG, merge_defaults

logger = logging.getLogger(__name__)

STATE_VERSION = "2.0.0"

# Never written to disk.
SECRET_KEYS = ("password",)

_Codec = Tuple[Callable[[str], Any], Callable[[Dict[str, Any]], str]]

_CODECS: Dict[str, _Codec] = {
    "json": (json.loads, lambda d: json.dumps(d, indent=2, sort_keys=True) + "\n"),
    "yaml": (lambda t: yaml.safe_load(t) or {}, lambda d: yaml.safe_dump(d, sort_keys=False)),
}


def _codec(path: Path) -> _Codec:
    ext = path.suffix.lower()
    return _CODECS["yaml"] if ext in (".yaml", ".yml") else _CODECS["json"]


def load_state(path: str) -> Dict[str, Any]:
    """Read a json/yaml state file; a missing file is an empty state."""

    p = Path(path)
    if not p.exists():
        return {}

    loads, _ = _codec(p)
    data = loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"State file must be an object/dict, got {type(data)}")
    logger.debug("Loaded state from %s", str(p))
    return data


def redact(state: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(state)
    cfg = out.get("config") or {}
    for key in SECRET_KEYS:
        cfg.pop(key, None)
    return out


def save_state(path: str, state: Dict[str, Any]) -> None:
    """Write state (secrets removed) via a temp file created 0600, then rename."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    _, dumps = _codec(p)

    tmp = p.with_name(p.name + ".tmp")
    tmp.unlink(missing_ok=True)
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(dumps(redact(state)))
    os.replace(tmp, p)
    logger.debug("Saved state to %s", str(p))


def ensure_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    """Fill required keys with sane defaults (without overriding user values)."""

    for key, default in (("version", STATE_VERSION), ("config", {}), ("host", {}), ("execution", {})):
        state.setdefault(key, default)

    merge_defaults(state["config"], DEFAULT_CONFIG)
    merge_defaults(
        state["execution"],
        {
            "current_step": None,
            "completed_steps": [],
            "errors": [],
            "warnings": [],
            "decisions": {},
        },
    )
    return state


def mark_step_completed(state: Dict[str, Any], step_id: str) -> None:
    completed = state.setdefault("execution", {}).setdefault("completed_steps", [])
    if step_id not in completed:
        completed.append(step_id)


def is_step_completed(state: Dict[str, Any], step_id: str) -> bool:
    return step_id in ((state.get("execution") or {}).get("completed_steps") or [])


def record_decision(state: Dict[str, Any], key: str, value: Any) -> None:
    state.setdefault("execution", {}).setdefault("decisions", {})[key] = value


def record_warning(state: Dict[str, Any], warning: Dict[str, Any]) -> None:
    state.setdefault("execution", {}).setdefault("warnings", []).append(warning)
