import datetime
from pathlib import Path
from typing import Tuple
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from network_resources_injector.services.k8s import KubernetesClient


# ---------------------------------------------------------------------------
# TLS material
# ---------------------------------------------------------------------------

def _write_cert_pair(directory: Path, common_name: str, cert_name: str, key_name: str) -> Tuple[Path, Path]:
    key = ec.generate_private_key(ec.SECP384R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(common_name)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    cert_path = directory / cert_name
    key_path = directory / key_name
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


@pytest.fixture
def cert_factory(tmp_path):
    """Write a fresh self-signed certificate/key pair, by default to cert.pem/key.pem in tmp_path."""

    def _factory(common_name: str = "nri.test", cert_name: str = "cert.pem", key_name: str = "key.pem"):
        return _write_cert_pair(tmp_path, common_name, cert_name, key_name)

    return _factory


@pytest.fixture
def cert_pair(cert_factory) -> Tuple[Path, Path]:
    return cert_factory()


# ---------------------------------------------------------------------------
# Cluster collaborator
# ---------------------------------------------------------------------------

@pytest.fixture
def kube_client() -> MagicMock:
    client = MagicMock(spec=KubernetesClient)
    client.list_network_attachment_definitions.return_value = {"items": [], "metadata": {"resourceVersion": "1"}}
    client.get_config_map_data.return_value = None
    client.find_owner_namespace.return_value = None
    return client
