from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = "/var/log/vts-bootstrap.log"

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(message)s"


def _file_handler(path: str) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    h = logging.FileHandler(path)
    h.setLevel(logging.DEBUG)
    h.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    return h


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure logging for a bootstrap run.

    The log file gets everything down to DEBUG (command stdout/stderr
    included); the console gets `level` and above in a short format.

    When the requested path is not writable (non-root dry runs), the file
    goes to ./vts-bootstrap.log instead.

    Returns the actual file path being used.
    """

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(root, "_vts_configured", False):
        return getattr(root, "_vts_log_path", log_path)

    chosen_path = log_path
    file_handler: Optional[logging.Handler] = None
    try:
        file_handler = _file_handler(log_path)
    except OSError:
        chosen_path = str(Path.cwd() / "vts-bootstrap.log")
        file_handler = _file_handler(chosen_path)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT))
        root.addHandler(console)

    setattr(root, "_vts_configured", True)
    setattr(root, "_vts_log_path", chosen_path)

    logging.getLogger(__name__).info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path
