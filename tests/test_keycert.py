import ssl
from types import SimpleNamespace

import pytest

from network_resources_injector.services.keycert import ClientCAPool, KeyCertIdentity, new_server_context


def test_server_context_restrictions():
    context = new_server_context()
    assert context.minimum_version is ssl.TLSVersion.TLSv1_2
    assert context.options & ssl.OP_CIPHER_SERVER_PREFERENCE
    assert context.verify_mode is ssl.CERT_NONE
    tls12_ciphers = [c["name"] for c in context.get_ciphers() if c["protocol"] == "TLSv1.2"]
    assert tls12_ciphers
    assert all(name.startswith("ECDHE-") and "GCM" in name for name in tls12_ciphers)


def test_client_ca_pool_requires_client_certificates(cert_pair):
    cert_path, _ = cert_pair
    pool = ClientCAPool([str(cert_path)])
    context = new_server_context(pool)
    assert context.verify_mode is ssl.CERT_REQUIRED


def test_client_ca_pool_insecure_skips_loading(tmp_path):
    pool = ClientCAPool([str(tmp_path / "missing.crt")], insecure=True)
    context = new_server_context(pool)
    assert context.verify_mode is ssl.CERT_NONE


def test_client_ca_pool_rejects_missing_file(tmp_path):
    with pytest.raises(ValueError, match="failed to load client CA"):
        ClientCAPool([str(tmp_path / "missing.crt")])


def test_client_ca_pool_rejects_garbage(tmp_path):
    bad = tmp_path / "bad.crt"
    bad.write_text("not a certificate")
    with pytest.raises(ValueError, match="failed to parse client CA"):
        ClientCAPool([str(bad)])


def test_client_ca_pool_requires_a_path():
    with pytest.raises(ValueError):
        ClientCAPool([])


def test_identity_loads_pair(cert_pair):
    cert_path, key_path = cert_pair
    identity = KeyCertIdentity(str(cert_path), str(key_path))
    assert isinstance(identity.get_context(), ssl.SSLContext)


def test_identity_rejects_mismatched_pair(cert_factory):
    cert_path, _ = cert_factory("a.test", "a.pem", "a-key.pem")
    _, other_key = cert_factory("b.test", "b.pem", "b-key.pem")
    with pytest.raises(ssl.SSLError):
        KeyCertIdentity(str(cert_path), str(other_key))


def test_reload_swaps_context(cert_factory):
    cert_path, key_path = cert_factory("first.test")
    identity = KeyCertIdentity(str(cert_path), str(key_path))
    before = identity.get_context()

    cert_factory("second.test")
    identity.reload()

    assert identity.get_context() is not before


def test_failed_reload_keeps_current_context(cert_factory):
    cert_path, key_path = cert_factory()
    identity = KeyCertIdentity(str(cert_path), str(key_path))
    before = identity.get_context()

    key_path.write_text("corrupted")
    with pytest.raises(ssl.SSLError):
        identity.reload()
    assert identity.get_context() is before


def test_handshake_callback_selects_current_context(cert_factory):
    cert_path, key_path = cert_factory()
    identity = KeyCertIdentity(str(cert_path), str(key_path))
    stale = identity.get_context()
    cert_factory("rotated.test")
    identity.reload()

    connection = SimpleNamespace(context=stale)
    identity.get_certificate_func()(connection, "nri.test", stale)
    assert connection.context is identity.get_context()
