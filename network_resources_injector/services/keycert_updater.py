"""
TLS certificate/key hot reload.

Watches the directories holding both files and reloads the identity only once
both have changed since the previous reload: rotation tools write the two files
separately and loading in between would pair a new certificate with an old key.

A change is detected by comparing what each path resolves to (target, inode,
size, mtime) rather than by event path. Secret volumes rotate by swapping a
``..data`` symlink, which never produces an event naming the files themselves.
"""

from __future__ import annotations

import os
import queue
import threading
from typing import Dict, NamedTuple, Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from ..core.logging import get_logger
from ..core.service import BackgroundService
from ..core.signal import LifecycleSignal
from ..exceptions import ServicePreflightError, ServiceReloadError
from .keycert import KeyCertIdentity


logger = get_logger(__name__)

SERVICE_NAME = "key cert updater"

# create, rename, remove, write and permission change (reported as modified)
WATCHED_EVENT_TYPES = {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}

_STOP = object()


class FileIdentity(NamedTuple):
    """What a path resolves to at one point in time."""

    target: str
    device: int
    inode: int
    size: int
    mtime_ns: int


def file_identity(path: str) -> Optional[FileIdentity]:
    """Resolve ``path`` through any symlinks; None while the file is missing."""
    try:
        stat = os.stat(path)
    except FileNotFoundError:
        return None
    return FileIdentity(os.path.realpath(path), stat.st_dev, stat.st_ino, stat.st_size, stat.st_mtime_ns)


class _ChangeEventHandler(FileSystemEventHandler):
    """Forwards every change inside the watched directories to the monitor loop."""

    def __init__(self, events: "queue.Queue[object]") -> None:
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in WATCHED_EVENT_TYPES:
            return
        self._events.put(os.fsdecode(event.src_path))


class KeyCertUpdater(BackgroundService):
    """Background service reloading the server identity when its files rotate."""

    def __init__(self, identity: KeyCertIdentity, timeout: float) -> None:
        super().__init__(SERVICE_NAME, timeout)
        self.identity = identity
        self._events: Optional["queue.Queue[object]"] = None
        self._cert_updated = False
        self._key_updated = False
        self._seen: Dict[str, Optional[FileIdentity]] = {}

    @property
    def cert_path(self) -> str:
        return os.path.abspath(self.identity.cert_path)

    @property
    def key_path(self) -> str:
        return os.path.abspath(self.identity.key_path)

    def preflight(self) -> None:
        if not self.identity.cert_path or not self.identity.key_path:
            raise ServicePreflightError(self.name, "cert and/or key path are not set")
        if not os.path.exists(self.identity.cert_path):
            raise ServicePreflightError(self.name, f"cert file does not exist at path '{self.identity.cert_path}'")
        if not os.path.exists(self.identity.key_path):
            raise ServicePreflightError(self.name, f"key file does not exist at path '{self.identity.key_path}'")

    def monitor(self, status: LifecycleSignal, quit_event: threading.Event) -> None:
        events: "queue.Queue[object]" = queue.Queue()
        self._events = events
        self._cert_updated = False
        self._key_updated = False
        self.snapshot()

        handler = _ChangeEventHandler(events)
        observer = Observer()
        for directory in {os.path.dirname(self.cert_path), os.path.dirname(self.key_path)}:
            observer.schedule(handler, directory, recursive=False)
        observer.start()
        try:
            status.open()
            while not quit_event.is_set():
                item = events.get()
                if item is _STOP:
                    break
                logger.debug("change in watched directory: '%s'", item)
                self.check_files()
        finally:
            observer.stop()
            observer.join(self.timeout)

    def request_stop(self) -> None:
        if self._events is not None:
            self._events.put(_STOP)

    def snapshot(self) -> None:
        """Remember what both paths currently resolve to."""
        self._seen = {path: file_identity(path) for path in (self.cert_path, self.key_path)}

    def check_files(self) -> bool:
        """Flag each file whose resolved identity moved since last seen. Returns True on reload."""
        reloaded = False
        for path in (self.cert_path, self.key_path):
            current = file_identity(path)
            # a missing file is mid-rotation, wait for its replacement
            if current is None or current == self._seen.get(path):
                continue
            self._seen[path] = current
            reloaded = self.on_path_changed(path) or reloaded
        return reloaded

    def on_path_changed(self, path: str) -> bool:
        """Record a change to one of the files; reload once both changed. Returns True on reload."""
        logger.info("modified file: '%s'", path)
        if path == self.cert_path:
            self._cert_updated = True
        if path == self.key_path:
            self._key_updated = True
        if not (self._cert_updated and self._key_updated):
            return False

        try:
            self.identity.reload()
        except Exception as exc:
            raise ServiceReloadError(self.name, f"failed to reload certificate: '{exc}'") from exc
        self._cert_updated = False
        self._key_updated = False
        return True
