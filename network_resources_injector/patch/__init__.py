from .annotations import append_customized, get_network_selections
from .downwardapi import HugepageResource, create_env, create_hugepages, create_volume
from .nodeselector import create_node_selector
from .operations import JSONPatchOperation, encode_patch, escape_json_pointer
from .resources import create_resource, update_resource

__all__ = [
    "HugepageResource",
    "JSONPatchOperation",
    "append_customized",
    "create_env",
    "create_hugepages",
    "create_node_selector",
    "create_resource",
    "create_volume",
    "encode_patch",
    "escape_json_pointer",
    "get_network_selections",
    "update_resource",
]
