"""A TLS certificate and key pair that is reloaded when its files change."""

from __future__ import annotations

import logging
import os
import ssl
import threading
from collections.abc import Callable
from typing import Any

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

_RELOAD_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}


def _load_context(cert_path: str, key_path: str) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_3
    context.load_cert_chain(cert_path, key_path)
    return context


def _normalize(path: Any) -> str:
    return os.path.realpath(os.fsdecode(path))


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, loader: KeypairLoader) -> None:
        super().__init__()
        self._loader = loader

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELOAD_EVENTS:
            return
        paths = {_normalize(event.src_path)}
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.add(_normalize(dest))
        self._loader._on_change(paths)


class KeypairLoader:
    """Holds the current TLS context and reloads it when the files change.

    ``loader`` turns the certificate and key paths into whatever is served;
    by default a TLS 1.3 server ``ssl.SSLContext``.
    """

    def __init__(
        self,
        cert_path: str | os.PathLike,
        key_path: str | os.PathLike,
        loader: Callable[[str, str], Any] = _load_context,
    ) -> None:
        self.cert_path = _normalize(cert_path)
        self.key_path = _normalize(key_path)
        self._loader = loader
        self._lock = threading.Lock()
        self._context = loader(self.cert_path, self.key_path)
        self._watched = {self.cert_path, self.key_path}
        self._closed = False
        self._observer = Observer()
        self._observer.daemon = True
        handler = _ChangeHandler(self)
        try:
            for directory in {os.path.dirname(p) for p in self._watched}:
                self._observer.schedule(handler, directory, recursive=False)
            self._observer.start()
        except Exception:
            self._observer.stop()
            raise

    def _on_change(self, paths: set[str]) -> None:
        changed = paths & self._watched
        if not changed:
            return
        logger.info("Keypair change detected, reloading... file=%s", ", ".join(sorted(changed)))
        try:
            self.load()
        except Exception as exc:
            logger.error("Failed to reload keypair: %s", exc)
        else:
            logger.info("Keypair successfully reloaded")

    def load(self) -> None:
        """Read the pair again; the previous one stays in use on failure."""
        context = self._loader(self.cert_path, self.key_path)
        with self._lock:
            self._context = context

    def context(self) -> Any:
        """Return the pair currently in use."""
        with self._lock:
            return self._context

    def close(self) -> None:
        """Stop watching the files."""
        if self._closed:
            return
        self._closed = True
        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join()

    def __enter__(self) -> KeypairLoader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()