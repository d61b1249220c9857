"""Node selector merge."""

from typing import Dict, Mapping, Optional

from .operations import NODE_SELECTOR_PATH, JSONPatchOperation, StringMap


def create_node_selector(
    existing: Optional[Mapping[str, str]], desired: Mapping[str, str]
) -> Optional[JSONPatchOperation]:
    """Union of the Pod's node selector with the desired labels; desired values win."""
    target: Dict[str, str] = dict(existing or {})
    target.update(desired)
    if not target:
        return None
    return JSONPatchOperation.add(NODE_SELECTOR_PATH, StringMap(target))
