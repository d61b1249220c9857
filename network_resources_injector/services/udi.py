"""
User-defined injections.

Operators publish annotation patches in a ConfigMap; each key is a Pod label
name and each value one JSON patch operation adding ``/metadata/annotations``.
A Pod labelled ``<key>: "true"`` receives that patch. The store is refreshed on a
fixed interval; a missing ConfigMap means no injections.
"""

from __future__ import annotations

import json
import threading
from typing import Dict, List, Mapping, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..core.locks import ReadWriteLock
from ..core.logging import get_logger
from ..core.service import BackgroundService
from ..core.signal import LifecycleSignal
from ..patch.operations import ANNOTATIONS_PATH, JSONPatchOperation
from .k8s import KubernetesClient


logger = get_logger(__name__)

SERVICE_NAME = "user defined injections updater"


class UserDefinedInjections:
    """Override key -> annotation patch, read by admission requests, replaced by the updater."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._patches: Dict[str, JSONPatchOperation] = {}

    @property
    def patches(self) -> Dict[str, JSONPatchOperation]:
        with self._lock.read_locked():
            return dict(self._patches)

    def set_injections(self, data: Optional[Mapping[str, str]]) -> None:
        """Apply one poll result: add new or changed keys, drop keys no longer present."""
        data = data or {}
        parsed: Dict[str, JSONPatchOperation] = {}
        for key, raw in data.items():
            try:
                operation = JSONPatchOperation.from_json(json.loads(raw))
            except (TypeError, ValueError) as exc:
                logger.error("failed to unmarshal user-defined injection %s: %s (%s)", key, raw, exc)
                continue
            # metadata.annotations is the only field operators may inject
            if operation.path != ANNOTATIONS_PATH:
                logger.error(
                    "path: %s is not supported, only %s can be defined by user", operation.path, ANNOTATIONS_PATH
                )
                continue
            parsed[key] = operation

        with self._lock.write_locked():
            for key, operation in parsed.items():
                if self._patches.get(key) != operation:
                    logger.info("initializing user-defined injections with key: %s, value: %s", key, data[key])
                    self._patches[key] = operation
            for key in [k for k in self._patches if k not in data]:
                logger.info("removing stale entry: %s from user-defined injections", key)
                del self._patches[key]

    def create_customized_patch(self, pod_labels: Mapping[str, str]) -> List[JSONPatchOperation]:
        """Patches whose key is a Pod label set to "true" (case-insensitive)."""
        with self._lock.read_locked():
            return [
                operation
                for key, operation in self._patches.items()
                if pod_labels.get(key, "").lower() == "true"
            ]


class UserDefinedInjectionUpdater(BackgroundService):
    """Background service polling the injections ConfigMap."""

    def __init__(
        self,
        kube_client: KubernetesClient,
        store: UserDefinedInjections,
        namespace: str,
        configmap_name: str,
        interval: float,
        timeout: float,
    ) -> None:
        super().__init__(SERVICE_NAME, timeout)
        self.kube_client = kube_client
        self.store = store
        self.namespace = namespace
        self.configmap_name = configmap_name
        self.interval = interval

    def refresh(self) -> bool:
        """Poll once. Returns False when the ConfigMap could not be read and the store was left as is."""
        try:
            data = self.kube_client.get_config_map_data(self.namespace, self.configmap_name)
        except (ApiException, Urllib3HTTPError, OSError) as exc:
            logger.warning("failed to get configmap for user-defined injections: %s", exc)
            return False
        self.store.set_injections(data)
        return True

    def monitor(self, status: LifecycleSignal, quit_event: threading.Event) -> None:
        status.open()
        while True:
            self.refresh()
            if quit_event.wait(self.interval):
                break
