"""
Network device resource requests/limits for the first container.
"""

from typing import Dict, List, Mapping, Sequence, Set

from ..core.logging import get_logger
from ..schemas.admission import Container
from .operations import EmptyObject, JSONPatchOperation, Quantity, escape_json_pointer
from .quantity import add_quantity

logger = get_logger(__name__)

CONTAINER_INDEX = 0


def _resources_path(key: str, resource_name: str = "") -> str:
    path = f"/spec/containers/{CONTAINER_INDEX}/resources/{escape_json_pointer(key)}"
    if resource_name:
        path += "/" + escape_json_pointer(resource_name)
    return path


def _ensure_resource_maps(containers: Sequence[Container]) -> List[JSONPatchOperation]:
    """Empty requests/limits objects must exist before keys can be added under them."""
    patches = []
    resources = containers[CONTAINER_INDEX].resources
    if not resources.requests:
        patches.append(JSONPatchOperation.add(_resources_path("requests"), EmptyObject()))
    if not resources.limits:
        patches.append(JSONPatchOperation.add(_resources_path("limits"), EmptyObject()))
    return patches


def _append_resource(patches: List[JSONPatchOperation], resource_name: str, request: str, limit: str) -> None:
    patches.append(JSONPatchOperation.add(_resources_path("requests", resource_name), Quantity(request)))
    patches.append(JSONPatchOperation.add(_resources_path("limits", resource_name), Quantity(limit)))


def declared_resource_names(containers: Sequence[Container]) -> Set[str]:
    names: Set[str] = set()
    for container in containers:
        names.update((container.resources.requests or {}).keys())
        names.update((container.resources.limits or {}).keys())
    return names


def create_resource(containers: Sequence[Container], resource_requests: Mapping[str, int]) -> List[JSONPatchOperation]:
    """Inject the tally as-is, skipping resources any container already declares."""
    patches = _ensure_resource_maps(containers)
    declared = declared_resource_names(containers)

    for resource_name, count in resource_requests.items():
        if resource_name in declared:
            logger.info("resource '%s' is already requested by the pod, not injecting it", resource_name)
            continue
        _append_resource(patches, resource_name, str(count), str(count))
    return patches


def update_resource(containers: Sequence[Container], resource_requests: Mapping[str, int]) -> List[JSONPatchOperation]:
    """Add the tally on top of quantities the first container already requests."""
    patches = _ensure_resource_maps(containers)
    existing_requests: Dict[str, str] = containers[CONTAINER_INDEX].resources.requests or {}
    existing_limits: Dict[str, str] = containers[CONTAINER_INDEX].resources.limits or {}

    for resource_name, count in resource_requests.items():
        request = str(count)
        limit = str(count)
        if resource_name in existing_requests:
            request = add_quantity(count, existing_requests[resource_name])
        if resource_name in existing_limits:
            limit = add_quantity(count, existing_limits[resource_name])
        _append_resource(patches, resource_name, request, limit)
    return patches
