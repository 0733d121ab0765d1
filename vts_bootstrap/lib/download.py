from __future__ import annotations

import logging
import os
import shutil
import ssl
import urllib.request
from pathlib import Path

logger = logging.getLogger(__name__)

USER_AGENT = "vts-bootstrap"


def tls_context(verify: bool) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    if not verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


def download_file(
    url: str,
    dest: str,
    *,
    mode: int | None = None,
    verify_tls: bool = True,
    timeout: int = 300,
    dry_run: bool = False,
) -> str:
    """Fetch url into dest, replacing any existing file.

    Partial files are removed when the transfer fails.
    """

    p = Path(dest)
    logger.info("Downloading %s -> %s", url, str(p))
    if dry_run:
        return str(p)

    p.parent.mkdir(parents=True, exist_ok=True)
    ctx = None if verify_tls else tls_context(False)
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout, context=ctx) as resp, p.open("wb") as out:
            shutil.copyfileobj(resp, out)
    except Exception:
        logger.error("Download failed: %s", url)
        if p.exists():
            p.unlink()
        raise

    if mode is not None:
        os.chmod(p, mode)
    logger.info("Download complete: %s", str(p))
    return str(p)


def fetch_text(url: str, *, timeout: int = 60, dry_run: bool = False) -> str:
    logger.info("Fetching %s", url)
    if dry_run:
        return ""
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        return resp.read().decode("utf-8")
