"""
Kubernetes cluster access.

- client: client construction and the typed reads the webhook needs
"""

from .client import (
    NAD_GROUP,
    NAD_PLURAL,
    NAD_VERSION,
    KubernetesClient,
    create_api_client,
)

__all__ = [
    "NAD_GROUP",
    "NAD_PLURAL",
    "NAD_VERSION",
    "KubernetesClient",
    "create_api_client",
]
