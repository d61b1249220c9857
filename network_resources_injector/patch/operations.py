"""
JSON Patch operations produced by the webhook.

Patch values are restricted to the handful of shapes the webhook emits, each
with its own serialization, instead of free-form JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

OP_ADD = "add"
ANNOTATIONS_PATH = "/metadata/annotations"
NODE_SELECTOR_PATH = "/spec/nodeSelector"
VOLUMES_PATH = "/spec/volumes/-"


def escape_json_pointer(segment: str) -> str:
    """RFC 6901 escaping of a single path segment."""
    return segment.replace("~", "~0").replace("/", "~1")


@dataclass(frozen=True)
class EmptyObject:
    def to_json(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class StringMap:
    values: Mapping[str, str]

    def to_json(self) -> Dict[str, str]:
        return dict(self.values)


@dataclass(frozen=True)
class Quantity:
    value: str

    def to_json(self) -> str:
        return self.value


@dataclass(frozen=True)
class EnvVar:
    name: str
    value: str

    def to_json(self) -> Dict[str, str]:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class EnvVarList:
    items: Tuple[EnvVar, ...]

    def to_json(self) -> List[Dict[str, str]]:
        return [item.to_json() for item in self.items]


@dataclass(frozen=True)
class VolumeMount:
    name: str
    mount_path: str
    read_only: bool = True

    def to_json(self) -> Dict[str, Any]:
        return {"name": self.name, "readOnly": self.read_only, "mountPath": self.mount_path}


@dataclass(frozen=True)
class DownwardAPIItem:
    path: str
    field_path: Optional[str] = None
    resource: Optional[str] = None
    container_name: Optional[str] = None
    divisor: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {"path": self.path}
        if self.field_path is not None:
            item["fieldRef"] = {"fieldPath": self.field_path}
        if self.resource is not None:
            selector: Dict[str, Any] = {"resource": self.resource}
            if self.container_name:
                selector["containerName"] = self.container_name
            if self.divisor is not None:
                selector["divisor"] = self.divisor
            item["resourceFieldRef"] = selector
        return item


@dataclass(frozen=True)
class DownwardAPIVolume:
    name: str
    items: Tuple[DownwardAPIItem, ...] = field(default_factory=tuple)

    def to_json(self) -> Dict[str, Any]:
        return {"name": self.name, "downwardAPI": {"items": [item.to_json() for item in self.items]}}


PatchValue = Union[EmptyObject, StringMap, Quantity, EnvVar, EnvVarList, VolumeMount, DownwardAPIVolume]


@dataclass(frozen=True)
class JSONPatchOperation:
    op: str
    path: str
    value: PatchValue

    def to_json(self) -> Dict[str, Any]:
        return {"op": self.op, "path": self.path, "value": self.value.to_json()}

    @classmethod
    def add(cls, path: str, value: PatchValue) -> "JSONPatchOperation":
        return cls(OP_ADD, path, value)

    @classmethod
    def from_json(cls, raw: Any) -> "JSONPatchOperation":
        """Parse an operator supplied operation; only ``add`` of a string map is accepted."""
        if not isinstance(raw, dict):
            raise ValueError("patch operation must be a JSON object")
        op = raw.get("op")
        path = raw.get("path")
        value = raw.get("value")
        if op != OP_ADD:
            raise ValueError(f"unsupported patch operation '{op}'")
        if not isinstance(path, str):
            raise ValueError("patch path must be a string")
        if not isinstance(value, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in value.items()
        ):
            raise ValueError("patch value must be a map of strings")
        return cls(op, path, StringMap(dict(value)))


def encode_patch(operations: Sequence[JSONPatchOperation]) -> bytes:
    return json.dumps([operation.to_json() for operation in operations]).encode("utf-8")
