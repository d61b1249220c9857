"""
Kubernetes client construction and the reads used by the webhook.
"""

from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from ...core.logging import get_logger


logger = get_logger(__name__)

NAD_GROUP = "k8s.cni.cncf.io"
NAD_VERSION = "v1"
NAD_PLURAL = "network-attachment-definitions"


def create_api_client(kube_config_path: Optional[str] = None) -> client.ApiClient:
    """
    Build an ApiClient from the in-cluster service account, or from a kubeconfig
    file when a path is given.

    Raises:
        ConfigException: no usable configuration was found
    """
    if kube_config_path:
        logger.info("loading kubeconfig from '%s'", kube_config_path)
        configuration = client.Configuration()
        config.load_kube_config(config_file=kube_config_path, client_configuration=configuration)
        return client.ApiClient(configuration)

    try:
        configuration = client.Configuration()
        config.load_incluster_config(client_configuration=configuration)
    except ConfigException:
        logger.error("in-cluster configuration is not available")
        raise
    return client.ApiClient(configuration)


class KubernetesClient:
    """Typed cluster reads shared by the cache, the override store and the mutation engine."""

    def __init__(self, api_client: Optional[client.ApiClient] = None) -> None:
        self.api_client = api_client
        self.core_v1 = client.CoreV1Api(api_client)
        self.apps_v1 = client.AppsV1Api(api_client)
        self.custom_objects = client.CustomObjectsApi(api_client)

    # ========== NetworkAttachmentDefinition ==========

    def get_network_attachment_definition(self, namespace: str, name: str) -> Dict[str, Any]:
        return self.custom_objects.get_namespaced_custom_object(
            NAD_GROUP, NAD_VERSION, namespace, NAD_PLURAL, name
        )

    def list_network_attachment_definitions(self, **kwargs: Any) -> Any:
        """Cluster wide list; also the list function handed to ``watch.Watch().stream``."""
        return self.custom_objects.list_cluster_custom_object(NAD_GROUP, NAD_VERSION, NAD_PLURAL, **kwargs)

    # ========== ConfigMap ==========

    def get_config_map_data(self, namespace: str, name: str) -> Optional[Dict[str, str]]:
        """ConfigMap data, or None when the ConfigMap does not exist."""
        try:
            cm = self.core_v1.read_namespaced_config_map(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return dict(cm.data) if cm.data else {}

    # ========== Owner references ==========

    def find_owner_namespace(self, kind: str, name: str, uid: str) -> Optional[str]:
        """
        Namespace of the controller identified by kind, name and UID.

        Returns None when no such object exists. Raises ApiException on API errors
        and ValueError for an unsupported kind.
        """
        field_selector = f"metadata.name={name}"
        if kind == "ReplicaSet":
            items = self.apps_v1.list_replica_set_for_all_namespaces(field_selector=field_selector).items
        elif kind == "DaemonSet":
            items = self.apps_v1.list_daemon_set_for_all_namespaces(field_selector=field_selector).items
        elif kind == "StatefulSet":
            items = self.apps_v1.list_stateful_set_for_all_namespaces(field_selector=field_selector).items
        elif kind == "ReplicationController":
            items = self.core_v1.list_replication_controller_for_all_namespaces(field_selector=field_selector).items
        else:
            raise ValueError(f"owner reference kind is not supported: {kind}")

        for item in items:
            if item.metadata.name == name and item.metadata.uid == uid:
                return item.metadata.namespace
        return None
