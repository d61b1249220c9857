"""
NetworkAttachmentDefinition annotation cache.

A cluster wide list+watch keeps a ``(namespace, name) -> annotations`` map fresh.
Watch events are consumed in delivery order by the monitor thread, the only
writer; admission requests read through ``get()`` under the shared lock.

A miss means "not cached yet", never "does not exist": callers fall back to a
direct API read.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from kubernetes import watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..core.locks import ReadWriteLock
from ..core.logging import get_logger
from ..core.service import BackgroundService
from ..core.signal import LifecycleSignal
from .k8s import KubernetesClient


logger = get_logger(__name__)

SERVICE_NAME = "net-attach-def cache"

EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"

HTTP_GONE = 410
RETRY_DELAY_SECONDS = 1.0


@dataclass(frozen=True)
class NetAttachDefEvent:
    type: str
    namespace: str
    name: str
    resource_version: str = ""
    annotations: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_object(cls, event_type: str, obj: Dict[str, Any]) -> "NetAttachDefEvent":
        metadata = obj.get("metadata") or {}
        return cls(
            type=event_type,
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            resource_version=str(metadata.get("resourceVersion", "")),
            annotations=dict(metadata.get("annotations") or {}),
        )


@dataclass(frozen=True)
class _Entry:
    resource_version: str
    annotations: Mapping[str, str]


class NetAttachDefCache(BackgroundService):
    """Background service mirroring attachment annotations from the cluster."""

    def __init__(
        self,
        kube_client: KubernetesClient,
        timeout: float,
        watch_timeout_seconds: int = 300,
        watch_factory: Callable[[], Any] = watch.Watch,
    ) -> None:
        super().__init__(SERVICE_NAME, timeout)
        self.kube_client = kube_client
        self.watch_timeout_seconds = watch_timeout_seconds
        self._watch_factory = watch_factory
        self._lock = ReadWriteLock()
        self._entries: Dict[Tuple[str, str], _Entry] = {}
        self._watch: Optional[Any] = None
        self._response: Optional[Any] = None

    # ========== reads ==========

    def get(self, namespace: str, name: str) -> Optional[Mapping[str, str]]:
        with self._lock.read_locked():
            entry = self._entries.get((namespace, name))
        return entry.annotations if entry is not None else None

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._entries)

    # ========== reconciliation ==========

    def apply(self, event: NetAttachDefEvent) -> None:
        key = (event.namespace, event.name)
        with self._lock.write_locked():
            if event.type == EVENT_DELETED:
                self._entries.pop(key, None)
                return

            existing = self._entries.get(key)
            if (
                event.type == EVENT_MODIFIED
                and existing is not None
                and existing.resource_version == event.resource_version
            ):
                logger.debug("no change in net-attach-def %s/%s, ignoring update event", *key)
                return
            self._entries[key] = _Entry(event.resource_version, MappingProxyType(dict(event.annotations)))

    def _relist(self) -> str:
        """Replace the whole map with a fresh list; returns the list's resourceVersion."""
        result = self.kube_client.list_network_attachment_definitions()
        entries: Dict[Tuple[str, str], _Entry] = {}
        for obj in result.get("items") or []:
            event = NetAttachDefEvent.from_object(EVENT_ADDED, obj)
            entries[(event.namespace, event.name)] = _Entry(
                event.resource_version, MappingProxyType(dict(event.annotations))
            )
        with self._lock.write_locked():
            self._entries = entries
        resource_version = str((result.get("metadata") or {}).get("resourceVersion", ""))
        logger.info("listed %d net-attach-def(s) at resource version '%s'", len(entries), resource_version)
        return resource_version

    def _list_for_watch(self, **kwargs: Any) -> Any:
        response = self.kube_client.list_network_attachment_definitions(**kwargs)
        self._response = response
        return response

    # ========== lifecycle ==========

    def monitor(self, status: LifecycleSignal, quit_event: threading.Event) -> None:
        logger.info("starting net-attach-def informer")
        resource_version = self._relist()
        status.open()

        while not quit_event.is_set():
            w = self._watch_factory()
            self._watch = w
            try:
                for raw in w.stream(
                    self._list_for_watch,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout_seconds,
                ):
                    if quit_event.is_set():
                        break
                    event_type = raw.get("type")
                    obj = raw.get("object")
                    if event_type == "ERROR":
                        code = obj.get("code") if isinstance(obj, dict) else None
                        if code == HTTP_GONE:
                            logger.info("net-attach-def watch expired, relisting")
                            resource_version = self._relist()
                            break
                        raise ApiException(status=code, reason=str(obj))
                    if event_type not in (EVENT_ADDED, EVENT_MODIFIED, EVENT_DELETED) or not isinstance(obj, dict):
                        continue
                    event = NetAttachDefEvent.from_object(event_type, obj)
                    self.apply(event)
                    if event.resource_version:
                        resource_version = event.resource_version
            except ApiException as exc:
                if quit_event.is_set():
                    break
                if exc.status != HTTP_GONE:
                    raise
                logger.info("net-attach-def watch expired, relisting")
                resource_version = self._relist()
            except (OSError, Urllib3HTTPError) as exc:
                if quit_event.is_set():
                    break
                logger.warning("net-attach-def watch interrupted: %s, re-establishing", exc)
                quit_event.wait(RETRY_DELAY_SECONDS)
            finally:
                w.stop()
                self._response = None

        logger.info("net-attach-def informer is stopped")

    def request_stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()
        response = self._response
        if response is None:
            return
        # unblock a read waiting on an idle watch connection
        shutdown = getattr(response, "shutdown", None) or getattr(response, "close", None)
        if shutdown is None:
            return
        try:
            shutdown()
        except Exception as exc:
            logger.debug("closing net-attach-def watch connection failed: %s", exc)

    def quit(self) -> None:
        try:
            super().quit()
        finally:
            with self._lock.write_locked():
                self._entries = {}
