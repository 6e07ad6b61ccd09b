"""Checking for a newer release."""

from __future__ import annotations

import contextlib
import http.client
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 20.0

_FIELDS = (
    ("url", "html_url"),
    ("tag_name", "tag_name"),
    ("created_at", "created_at"),
    ("published_at", "published_at"),
)


@dataclass(frozen=True)
class ReleaseInfo:
    """The parts of a release description that matter here."""

    url: str = ""
    tag_name: str = ""
    created_at: str = ""
    published_at: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> ReleaseInfo:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("release information must be a JSON object")
        values = {}
        for name, key in _FIELDS:
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"release field {key} must be a string")
            values[name] = value
        return cls(**values)


def fetch_latest_release(url: str, timeout: float = FETCH_TIMEOUT) -> ReleaseInfo:
    """Fetch and decode the latest release description from ``url``.

    The body is decoded whatever the status code of the reply.
    """
    try:
        resp = urllib.request.urlopen(url, timeout=timeout)
    except urllib.error.HTTPError as exc:
        resp = exc
    with contextlib.closing(resp):
        body = resp.read()
    return ReleaseInfo.from_dict(json.loads(body))


def check_update(current_version: str, url: str) -> ReleaseInfo | None:
    """Log and return the latest release if it differs from ``current_version``.

    Failures are ignored and give ``None``.
    """
    try:
        info = fetch_latest_release(url)
    except (OSError, ValueError, http.client.HTTPException):
        return None
    if info.tag_name == current_version:
        return None
    logger.info("New version available: version=%s url=%s", info.tag_name, info.url)
    return info