"""
Admission mutation engine.

Turns one admission request for a Pod into an allow/deny decision and an
ordered JSON Patch: resource requests for the selected network attachments,
the Downward API volume, user-defined annotations and node selectors.
"""

import base64
from typing import Dict, List, Mapping, Optional, Sequence

from kubernetes.client.rest import ApiException
from pydantic import ValidationError
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..core.logging import get_logger
from ..exceptions import AdmissionDeniedError, BadRequestError, NodeSelectorError
from ..patch import (
    JSONPatchOperation,
    append_customized,
    create_hugepages,
    create_node_selector,
    create_resource,
    create_volume,
    encode_patch,
    get_network_selections,
    update_resource,
)
from ..schemas.admission import AdmissionRequest, AdmissionResponse, AdmissionStatus, Pod
from ..services.k8s import KubernetesClient
from ..services.nad_cache import NetAttachDefCache
from ..services.udi import UserDefinedInjections
from .namespace import resolve_namespace
from .network import NetworkSelection, parse_network_selections

logger = get_logger(__name__)

NETWORKS_ANNOTATION_KEY = "k8s.v1.cni.cncf.io/networks"
DEFAULT_NETWORK_ANNOTATION_KEY = "v1.multus-cni.io/default-network"
NODE_SELECTOR_KEY = "k8s.v1.cni.cncf.io/nodeSelector"

PATCH_TYPE_JSON_PATCH = "JSONPatch"
MESSAGE_ALLOWED = "allowed"
MESSAGE_NO_NETWORK_ANNOTATIONS = "Pod spec doesn't have network annotations. Skipping..."
MESSAGE_NAMESPACE_UNRESOLVED = "Pod namespace could not be resolved. Skipping..."


def parse_node_selector(attachment_name: str, value: str, node_selector: Dict[str, str]) -> None:
    """Add the ``key=value`` (or bare ``key``) label of an attachment to ``node_selector``."""
    parts = value.split("=")
    if len(parts) > 2:
        raise NodeSelectorError(f"node selector in net-attach-def {attachment_name} has more than one label")
    if len(parts) == 2:
        node_selector[parts[0].strip()] = parts[1].strip()
    else:
        node_selector[value.strip()] = ""


class MutationEngine:
    """
    Request-synchronous mutation logic, safe to call from many threads.

    Cluster state is read through the annotation cache and the user-defined
    injection store; both are only touched through their accessors.
    """

    def __init__(
        self,
        kube_client: KubernetesClient,
        nad_cache: NetAttachDefCache,
        udi_store: UserDefinedInjections,
        resource_name_keys: Sequence[str],
        inject_hugepage_down_api: bool = False,
        honor_resources: bool = False,
    ) -> None:
        self.kube_client = kube_client
        self.nad_cache = nad_cache
        self.udi_store = udi_store
        self.resource_name_keys = list(resource_name_keys)
        self.inject_hugepage_down_api = inject_hugepage_down_api
        self.honor_resources = honor_resources

    # ========== Response helpers ==========

    @staticmethod
    def _response(
        request: AdmissionRequest,
        allowed: bool,
        message: str = "",
        patch: Optional[List[JSONPatchOperation]] = None,
    ) -> AdmissionResponse:
        response = AdmissionResponse(uid=request.uid, allowed=allowed)
        if message:
            response.status = AdmissionStatus(message=message)
        if patch:
            response.patch = base64.b64encode(encode_patch(patch)).decode("ascii")
            response.patch_type = PATCH_TYPE_JSON_PATCH
        return response

    # ========== Steps ==========

    def deserialize_pod(self, request: AdmissionRequest) -> Pod:
        if request.object is None:
            raise AdmissionDeniedError("admission request does not carry a Pod object")
        try:
            pod = Pod.model_validate(request.object)
        except ValidationError as exc:
            raise AdmissionDeniedError(f"failed to decode Pod: {exc}") from exc
        resolve_namespace(self.kube_client, pod, request.namespace)
        return pod

    def get_attachment_annotations(self, namespace: str, name: str) -> Mapping[str, str]:
        """Annotations of a network attachment, from the cache or, on a miss, the API server."""
        if not name:
            reason = f"could not find network attachment definition '{namespace}/{name}': name is empty"
            logger.error(reason)
            raise AdmissionDeniedError(reason)

        annotations = self.nad_cache.get(namespace, name)
        if annotations is not None:
            return annotations

        logger.info(
            "cache entry not found, retrieving network attachment definition '%s/%s' from api server",
            namespace,
            name,
        )
        try:
            obj = self.kube_client.get_network_attachment_definition(namespace, name)
        except (ApiException, Urllib3HTTPError, OSError) as exc:
            reason = f"could not find network attachment definition '{namespace}/{name}': {exc}"
            logger.error(reason)
            raise AdmissionDeniedError(reason) from exc
        return (obj.get("metadata") or {}).get("annotations") or {}

    def accumulate(
        self, selection: NetworkSelection, resource_requests: Dict[str, int], node_selector: Dict[str, str]
    ) -> None:
        """Count the resources an attachment needs and collect its node selector label."""
        annotations = self.get_attachment_annotations(selection.namespace, selection.name)
        logger.info("network attachment definition '%s/%s' found", selection.namespace, selection.name)

        for key in self.resource_name_keys:
            resource_name = annotations.get(key)
            if resource_name is None:
                logger.debug("network '%s/%s' doesn't use custom resources", selection.namespace, selection.name)
                continue
            resource_requests[resource_name] = resource_requests.get(resource_name, 0) + 1
            logger.info(
                "resource '%s' needs to be requested for network '%s/%s'",
                resource_name,
                selection.namespace,
                selection.name,
            )

        if NODE_SELECTOR_KEY in annotations:
            parse_node_selector(selection.name, annotations[NODE_SELECTOR_KEY], node_selector)

    def build_patch(
        self,
        pod: Pod,
        resource_requests: Dict[str, int],
        node_selector: Dict[str, str],
        user_patches: Sequence[JSONPatchOperation],
    ) -> List[JSONPatchOperation]:
        patches: List[JSONPatchOperation] = []

        if not resource_requests:
            logger.info("pod %s doesn't need any custom network resources", pod.display_name)
        else:
            if not pod.spec.containers:
                raise BadRequestError(f"pod {pod.display_name} has no containers to inject resources into")
            if self.honor_resources:
                patches.extend(update_resource(pod.spec.containers, resource_requests))
            else:
                patches.extend(create_resource(pod.spec.containers, resource_requests))

            hugepages = []
            if self.inject_hugepage_down_api:
                env_patches, hugepages = create_hugepages(pod)
                patches.extend(env_patches)
            patches.extend(create_volume(pod, hugepages))

            annotations = append_customized(pod, user_patches)
            if annotations is not None:
                patches.append(annotations)

        node_selector_patch = create_node_selector(pod.spec.node_selector, node_selector)
        if node_selector_patch is not None:
            patches.append(node_selector_patch)
        return patches

    # ========== Entry point ==========

    def mutate(self, request: AdmissionRequest) -> AdmissionResponse:
        """
        Admission response for one request.

        Business failures become ``allowed=false`` responses. Malformed input
        raises a ``WebhookException`` subclass and is answered at the HTTP level.
        """
        try:
            return self._mutate(request)
        except AdmissionDeniedError as exc:
            logger.error("denying admission request: %s", exc.message)
            return self._response(request, allowed=False, message=exc.message)

    def _mutate(self, request: AdmissionRequest) -> AdmissionResponse:
        pod = self.deserialize_pod(request)
        logger.info("AdmissionReview request received for pod %s", pod.display_name)

        user_patches = self.udi_store.create_customized_patch(pod.metadata.labels)

        default_value, default_exists = get_network_selections(DEFAULT_NETWORK_ANNOTATION_KEY, pod, user_patches)
        networks_value, networks_exist = get_network_selections(NETWORKS_ANNOTATION_KEY, pod, user_patches)

        if not default_exists and not networks_exist:
            logger.info("pod %s spec doesn't have network annotations. Skipping...", pod.display_name)
            return self._response(request, allowed=True, message=MESSAGE_NO_NETWORK_ANNOTATIONS)

        namespace = pod.metadata.namespace
        selections: List[NetworkSelection] = []
        for value, only_single in ((default_value, True), (networks_value, False)):
            if not value:
                continue
            parsed = parse_network_selections(value, namespace)
            if parsed is None:
                return self._response(request, allowed=True, message=MESSAGE_NAMESPACE_UNRESOLVED)
            # the default network only counts when it names exactly one attachment
            if only_single and len(parsed) != 1:
                continue
            selections.extend(parsed)

        resource_requests: Dict[str, int] = {}
        node_selector: Dict[str, str] = {}
        for selection in selections:
            self.accumulate(selection, resource_requests, node_selector)
        logger.info(
            "pod %s has resource requests: %s and node selectors: %s",
            pod.display_name,
            resource_requests,
            node_selector,
        )

        patches = self.build_patch(pod, resource_requests, node_selector, user_patches)
        logger.info("patch after all mutations: %s for pod %s", [p.to_json() for p in patches], pod.display_name)
        return self._response(request, allowed=True, message=MESSAGE_ALLOWED, patch=patches)
