"""Fetching the GeoIP country database when it is not present."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import urllib.error
import urllib.request
from pathlib import Path

logger = logging.getLogger(__name__)


def download_mmdb(filename: str | os.PathLike, url: str) -> None:
    """Download ``url`` into ``filename``, whatever the status of the reply."""
    try:
        resp = urllib.request.urlopen(url)
    except urllib.error.HTTPError as exc:
        resp = exc
    with contextlib.closing(resp), open(filename, "wb") as out:
        shutil.copyfileobj(resp, out)


def ensure_mmdb(filename: str | os.PathLike, url: str) -> Path:
    """Return the database path, downloading it first if it does not exist."""
    path = Path(filename)
    try:
        path.stat()
    except FileNotFoundError:
        logger.info("GeoLite2 database not found, downloading...")
        download_mmdb(path, url)
        logger.info("GeoLite2 database downloaded: file=%s", path)
    return path