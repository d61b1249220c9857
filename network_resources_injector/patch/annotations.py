"""Annotation lookups and the merged annotation patch built from user-defined injections."""

from typing import Dict, Optional, Sequence, Tuple

from ..core.logging import get_logger
from ..schemas.admission import Pod
from .operations import ANNOTATIONS_PATH, OP_ADD, JSONPatchOperation, StringMap

logger = get_logger(__name__)


def _annotation_maps(user_patches: Sequence[JSONPatchOperation]):
    for operation in user_patches:
        if operation.op == OP_ADD and operation.path == ANNOTATIONS_PATH and isinstance(operation.value, StringMap):
            yield operation.value.values


def get_network_selections(
    annotation_key: str, pod: Pod, user_patches: Sequence[JSONPatchOperation]
) -> Tuple[str, bool]:
    """
    Value of a network annotation for the Pod.

    The Pod's own annotation wins; otherwise the first user-defined injection
    that sets the key is used.
    """
    if annotation_key in pod.metadata.annotations:
        logger.debug("%s is defined in original pod annotations", annotation_key)
        return pod.metadata.annotations[annotation_key], True

    for annotations in _annotation_maps(user_patches):
        if annotation_key in annotations:
            logger.info("%s is found in user-defined annotations", annotation_key)
            return annotations[annotation_key], True

    logger.debug("%s is not found in either pod annotations or user-defined injections", annotation_key)
    return "", False


def append_customized(pod: Pod, user_patches: Sequence[JSONPatchOperation]) -> Optional[JSONPatchOperation]:
    """
    Single ``add /metadata/annotations`` merging every user-defined injection.

    The first injection setting a key wins. The Pod's existing annotations are
    kept for keys the injections do not set, since the operation replaces the
    whole map. Returns None when no injection applies.
    """
    annotations: Dict[str, str] = {}
    for values in _annotation_maps(user_patches):
        for key, value in values.items():
            if key in annotations:
                logger.warning("ignoring duplicate user defined injected annotation: %s: %s", key, value)
                continue
            annotations[key] = value

    if not annotations:
        return None

    for key, value in pod.metadata.annotations.items():
        annotations.setdefault(key, value)
    return JSONPatchOperation.add(ANNOTATIONS_PATH, StringMap(annotations))

