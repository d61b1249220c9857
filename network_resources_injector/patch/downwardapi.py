"""
Downward API exposure of Pod labels, annotations and hugepage allocations.

Every container gets the ``podnetinfo`` volume mounted at ``/etc/podnetinfo``.
Containers requesting hugepages additionally get ``CONTAINER_NAME`` in their
environment so they can find their own hugepage files in the volume.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..core.logging import get_logger
from ..schemas.admission import Container, Pod
from .operations import (
    VOLUMES_PATH,
    DownwardAPIItem,
    DownwardAPIVolume,
    EnvVar,
    EnvVarList,
    JSONPatchOperation,
    VolumeMount,
)
from .quantity import is_zero

logger = get_logger(__name__)

VOLUME_NAME = "podnetinfo"
DOWNWARD_API_MOUNT_PATH = "/etc/podnetinfo"
LABELS_PATH = "labels"
ANNOTATIONS_PATH = "annotations"
ENV_NAME_CONTAINER_NAME = "CONTAINER_NAME"
HUGEPAGE_DIVISOR = "1Mi"

# (resources field, resource name, downward API file prefix)
HUGEPAGE_CHECKS = (
    ("requests", "hugepages-1Gi", "hugepages_1G_request"),
    ("requests", "hugepages-2Mi", "hugepages_2M_request"),
    ("limits", "hugepages-1Gi", "hugepages_1G_limit"),
    ("limits", "hugepages-2Mi", "hugepages_2M_limit"),
)


@dataclass(frozen=True)
class HugepageResource:
    resource_name: str
    container_name: str
    path: str


def create_hugepages(pod: Pod) -> Tuple[List[JSONPatchOperation], List[HugepageResource]]:
    """Find non-zero hugepage requests/limits per container and add CONTAINER_NAME to those containers."""
    patches: List[JSONPatchOperation] = []
    hugepages: List[HugepageResource] = []

    for index, container in enumerate(pod.spec.containers):
        found = False
        for field_name, resource_name, file_prefix in HUGEPAGE_CHECKS:
            quantities = getattr(container.resources, field_name) or {}
            if resource_name in quantities and not is_zero(quantities[resource_name]):
                hugepages.append(
                    HugepageResource(
                        resource_name=f"{field_name}.{resource_name}",
                        container_name=container.name,
                        path=f"{file_prefix}_{container.name}",
                    )
                )
                found = True

        if found:
            operation = create_env(container, index, ENV_NAME_CONTAINER_NAME, container.name)
            if operation is not None:
                patches.append(operation)
    return patches, hugepages


def create_env(container: Container, index: int, name: str, value: str) -> Optional[JSONPatchOperation]:
    """Env var add operation, or None when the container already defines the variable."""
    if not container.env:
        return JSONPatchOperation.add(f"/spec/containers/{index}/env", EnvVarList((EnvVar(name, value),)))

    for env in container.env:
        if env.name == name:
            if env.value != value:
                logger.warning(
                    "Error, adding env '%s', name existed but value different: '%s' != '%s'", name, env.value, value
                )
            return None
    return JSONPatchOperation.add(f"/spec/containers/{index}/env/-", EnvVar(name, value))


def create_volume(pod: Pod, hugepages: List[HugepageResource]) -> List[JSONPatchOperation]:
    patches = [
        JSONPatchOperation.add(
            f"/spec/containers/{index}/volumeMounts/-",
            VolumeMount(name=VOLUME_NAME, mount_path=DOWNWARD_API_MOUNT_PATH, read_only=True),
        )
        for index in range(len(pod.spec.containers))
    ]

    items: List[DownwardAPIItem] = []
    if pod.metadata.labels:
        items.append(DownwardAPIItem(path=LABELS_PATH, field_path="metadata.labels"))
    if pod.metadata.annotations:
        items.append(DownwardAPIItem(path=ANNOTATIONS_PATH, field_path="metadata.annotations"))
    for hugepage in hugepages:
        items.append(
            DownwardAPIItem(
                path=hugepage.path,
                resource=hugepage.resource_name,
                container_name=hugepage.container_name,
                divisor=HUGEPAGE_DIVISOR,
            )
        )

    patches.append(JSONPatchOperation.add(VOLUMES_PATH, DownwardAPIVolume(name=VOLUME_NAME, items=tuple(items))))
    return patches
