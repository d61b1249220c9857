"""Pod namespace recovery for Pods created before their namespace is filled in."""

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from ..core.logging import get_logger
from ..exceptions import AdmissionDeniedError
from ..schemas.admission import OwnerReference, Pod
from ..services.k8s import KubernetesClient

logger = get_logger(__name__)

DEFAULT_NAMESPACE = "default"


def namespace_from_owner_reference(kube_client: KubernetesClient, owner: OwnerReference) -> str:
    """
    Namespace of the Pod's controller, or "" when the controller cannot be found.

    Unsupported owner kinds map to the ``default`` namespace.

    Raises:
        AdmissionDeniedError: the cluster lookup failed
    """
    try:
        namespace = kube_client.find_owner_namespace(owner.kind, owner.name, owner.uid)
    except ValueError:
        logger.info("owner reference kind is not supported: %s, using default namespace", owner.kind)
        return DEFAULT_NAMESPACE
    except (ApiException, Urllib3HTTPError, OSError) as exc:
        raise AdmissionDeniedError(f"failed to look up {owner.kind} {owner.name}: {exc}") from exc

    if namespace is None:
        logger.warning("pod namespace is not found via owner %s %s", owner.kind, owner.name)
        return ""
    return namespace


def resolve_namespace(kube_client: KubernetesClient, pod: Pod, request_namespace: str) -> str:
    """Fill ``pod.metadata.namespace`` from the request or the first owner reference and return it."""
    if pod.metadata.namespace:
        return pod.metadata.namespace

    if request_namespace:
        pod.metadata.namespace = request_namespace
    elif pod.metadata.owner_references:
        pod.metadata.namespace = namespace_from_owner_reference(kube_client, pod.metadata.owner_references[0])
    return pod.metadata.namespace
