import json
import socket
import time

import httpx
import pytest

from network_resources_injector.core.signal import ServiceState
from network_resources_injector.exceptions import ServicePreflightError, ServiceStartError
from network_resources_injector.main import create_app
from network_resources_injector.server import MAX_HEADER_BYTES, MutateServer
from network_resources_injector.services.keycert import ClientCAPool, KeyCertIdentity, new_server_context
from network_resources_injector.services.nad_cache import NetAttachDefCache
from network_resources_injector.services.udi import UserDefinedInjections
from network_resources_injector.webhook.mutate import MutationEngine
from tests.helpers import admission_review, pod_object


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def identity(cert_pair):
    cert_path, key_path = cert_pair
    pool = ClientCAPool([], insecure=True)
    return KeyCertIdentity(str(cert_path), str(key_path), context_factory=lambda: new_server_context(pool))


@pytest.fixture
def app(kube_client):
    engine = MutationEngine(kube_client, NetAttachDefCache(kube_client, 1.0), UserDefinedInjections(), ["key"])
    return create_app(engine)


def _server(app, identity, port, **kwargs):
    kwargs.setdefault("startup_interval", 0.5)
    return MutateServer(app, identity, "127.0.0.1", port, timeout=4.0, **kwargs)


def test_serves_admission_reviews_over_tls(app, identity):
    port = _free_port()
    server = _server(app, identity, port)
    server.run()
    try:
        response = None
        deadline = time.monotonic() + 5
        while response is None:
            try:
                response = httpx.post(
                    f"https://127.0.0.1:{port}/mutate",
                    content=json.dumps(admission_review(pod_object(), uid="tls-1")),
                    headers={"Content-Type": "application/json"},
                    verify=False,
                )
            except httpx.ConnectError:
                if time.monotonic() > deadline:
                    raise
                time.sleep(0.05)
        assert response.status_code == 200
        assert response.json()["response"]["uid"] == "tls-1"
    finally:
        server.quit()
    assert server.state is ServiceState.STOPPED
    assert server.error is None


def test_bind_failure_is_reported_by_run(app, identity):
    with socket.socket() as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]

        server = _server(app, identity, port)
        with pytest.raises(ServiceStartError):
            server.run()
    assert server.state is ServiceState.STOPPED


def test_invalid_port_fails_preflight(app, identity):
    with pytest.raises(ServicePreflightError):
        _server(app, identity, 0).run()


def test_listener_bounds_request_head_and_concurrency(app, identity):
    server = _server(app, identity, _free_port(), limit_concurrency=10, backlog=64)
    config = server.build_server().config

    assert config.http == "h11"
    assert config.h11_max_incomplete_event_size == MAX_HEADER_BYTES == 1 << 20
    assert config.limit_concurrency == 10
    assert config.backlog == 64
