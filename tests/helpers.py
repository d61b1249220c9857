"""Builders for cluster objects and admission payloads used across the tests."""

import base64
import json
from typing import Any, Dict, List, Optional


def nad_object(
    namespace: str, name: str, annotations: Optional[Dict[str, str]] = None, resource_version: str = "1"
) -> Dict[str, Any]:
    return {
        "apiVersion": "k8s.cni.cncf.io/v1",
        "kind": "NetworkAttachmentDefinition",
        "metadata": {
            "namespace": namespace,
            "name": name,
            "resourceVersion": resource_version,
            "annotations": annotations or {},
        },
        "spec": {"config": "{}"},
    }


def pod_object(
    namespace: str = "ns1",
    annotations: Optional[Dict[str, str]] = None,
    labels: Optional[Dict[str, str]] = None,
    containers: Optional[List[Dict[str, Any]]] = None,
    node_selector: Optional[Dict[str, str]] = None,
    owner_references: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"name": "test-pod"}
    if namespace:
        metadata["namespace"] = namespace
    if annotations is not None:
        metadata["annotations"] = annotations
    if labels is not None:
        metadata["labels"] = labels
    if owner_references is not None:
        metadata["ownerReferences"] = owner_references
    spec: Dict[str, Any] = {
        "containers": containers if containers is not None else [{"name": "app", "image": "busybox"}]
    }
    if node_selector is not None:
        spec["nodeSelector"] = node_selector
    return {"apiVersion": "v1", "kind": "Pod", "metadata": metadata, "spec": spec}


def admission_review(
    pod: Dict[str, Any], uid: str = "req-1", namespace: str = "", api_version: str = "admission.k8s.io/v1"
) -> Dict[str, Any]:
    return {
        "apiVersion": api_version,
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "kind": {"group": "", "version": "v1", "kind": "Pod"},
            "namespace": namespace,
            "operation": "CREATE",
            "object": pod,
        },
    }


def decode_patch(encoded: str) -> List[Dict[str, Any]]:
    return json.loads(base64.b64decode(encoded))
