import threading
import time

import pytest
from kubernetes.client.rest import ApiException

from network_resources_injector.core.signal import ServiceState
from network_resources_injector.services.nad_cache import NetAttachDefCache, NetAttachDefEvent
from tests.helpers import nad_object


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeWatch:
    """Yields one scripted batch of events, then blocks like an idle watch until stopped."""

    def __init__(self, batch):
        self.batch = batch
        self.kwargs = None
        self._stopped = threading.Event()

    def stream(self, func, **kwargs):
        self.kwargs = kwargs
        for event in self.batch:
            if isinstance(event, Exception):
                raise event
            yield event
        self._stopped.wait()

    def stop(self):
        self._stopped.set()


class FakeWatchFactory:
    def __init__(self, *batches):
        self.batches = list(batches)
        self.watches = []

    def __call__(self):
        batch = self.batches.pop(0) if self.batches else []
        w = FakeWatch(batch)
        self.watches.append(w)
        return w


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


def _event(event_type, namespace, name, annotations=None, resource_version="1"):
    return NetAttachDefEvent.from_object(event_type, nad_object(namespace, name, annotations, resource_version))


# ---------------------------------------------------------------------------
# apply / get
# ---------------------------------------------------------------------------

def test_add_then_get(kube_client):
    cache = NetAttachDefCache(kube_client, timeout=1.0)
    cache.apply(_event("ADDED", "ns1", "net-a", {"k": "v"}))

    assert dict(cache.get("ns1", "net-a")) == {"k": "v"}
    assert cache.get("ns1", "net-b") is None
    assert len(cache) == 1


def test_stored_annotations_are_read_only(kube_client):
    cache = NetAttachDefCache(kube_client, timeout=1.0)
    cache.apply(_event("ADDED", "ns1", "net-a", {"k": "v"}))
    with pytest.raises(TypeError):
        cache.get("ns1", "net-a")["k"] = "changed"


def test_update_with_same_resource_version_is_ignored(kube_client):
    cache = NetAttachDefCache(kube_client, timeout=1.0)
    cache.apply(_event("ADDED", "ns1", "net-a", {"k": "v1"}, resource_version="5"))
    cache.apply(_event("MODIFIED", "ns1", "net-a", {"k": "v2"}, resource_version="5"))
    assert cache.get("ns1", "net-a")["k"] == "v1"


def test_update_with_new_resource_version_replaces(kube_client):
    cache = NetAttachDefCache(kube_client, timeout=1.0)
    cache.apply(_event("ADDED", "ns1", "net-a", {"k": "v1"}, resource_version="5"))
    cache.apply(_event("MODIFIED", "ns1", "net-a", {"k": "v2"}, resource_version="6"))
    assert cache.get("ns1", "net-a")["k"] == "v2"


def test_delete_removes_entry(kube_client):
    cache = NetAttachDefCache(kube_client, timeout=1.0)
    cache.apply(_event("ADDED", "ns1", "net-a"))
    cache.apply(_event("DELETED", "ns1", "net-a"))
    assert cache.get("ns1", "net-a") is None


def test_event_from_object_without_annotations():
    event = NetAttachDefEvent.from_object("ADDED", {"metadata": {"namespace": "ns1", "name": "n", "annotations": None}})
    assert event.annotations == {}
    assert event.resource_version == ""


# ---------------------------------------------------------------------------
# list + watch
# ---------------------------------------------------------------------------

def test_run_lists_then_applies_watch_events(kube_client):
    kube_client.list_network_attachment_definitions.return_value = {
        "items": [nad_object("ns1", "listed", {"a": "1"}, "3")],
        "metadata": {"resourceVersion": "3"},
    }
    factory = FakeWatchFactory(
        [
            {"type": "ADDED", "object": nad_object("ns1", "watched", {"b": "2"}, "4")},
            {"type": "DELETED", "object": nad_object("ns1", "listed", {}, "5")},
        ]
    )
    cache = NetAttachDefCache(kube_client, timeout=2.0, watch_timeout_seconds=30, watch_factory=factory)

    cache.run()
    try:
        _wait_for(lambda: cache.get("ns1", "listed") is None)
        assert dict(cache.get("ns1", "watched")) == {"b": "2"}
        assert factory.watches[0].kwargs == {"resource_version": "3", "timeout_seconds": 30}
    finally:
        cache.quit()

    assert cache.state is ServiceState.STOPPED
    assert len(cache) == 0


def test_expired_watch_relists(kube_client):
    kube_client.list_network_attachment_definitions.side_effect = [
        {"items": [], "metadata": {"resourceVersion": "1"}},
        {"items": [nad_object("ns1", "net-a", {}, "9")], "metadata": {"resourceVersion": "9"}},
    ]
    factory = FakeWatchFactory([{"type": "ERROR", "object": {"kind": "Status", "code": 410}}])
    cache = NetAttachDefCache(kube_client, timeout=2.0, watch_factory=factory)

    cache.run()
    try:
        _wait_for(lambda: len(factory.watches) == 2)
        assert cache.get("ns1", "net-a") is not None
        assert factory.watches[1].kwargs["resource_version"] == "9"
    finally:
        cache.quit()


def test_gone_api_exception_relists(kube_client):
    kube_client.list_network_attachment_definitions.side_effect = [
        {"items": [], "metadata": {"resourceVersion": "1"}},
        {"items": [], "metadata": {"resourceVersion": "2"}},
    ]
    factory = FakeWatchFactory([ApiException(status=410, reason="Gone")])
    cache = NetAttachDefCache(kube_client, timeout=2.0, watch_factory=factory)

    cache.run()
    try:
        _wait_for(lambda: len(factory.watches) == 2)
        assert factory.watches[1].kwargs["resource_version"] == "2"
    finally:
        cache.quit()


def test_fatal_watch_error_stops_service(kube_client):
    factory = FakeWatchFactory([ApiException(status=403, reason="Forbidden")])
    cache = NetAttachDefCache(kube_client, timeout=2.0, watch_factory=factory)

    cache.run()
    cache.status_signal().wait_until_closed(2.0)
    assert isinstance(cache.error, ApiException)
    cache.quit()


def test_restart_repopulates_from_scratch(kube_client):
    kube_client.list_network_attachment_definitions.return_value = {
        "items": [nad_object("ns1", "net-a", {"k": "v"})],
        "metadata": {"resourceVersion": "1"},
    }
    cache = NetAttachDefCache(kube_client, timeout=2.0, watch_factory=FakeWatchFactory())

    cache.run()
    cache.quit()
    assert cache.get("ns1", "net-a") is None

    cache.run()
    try:
        assert cache.get("ns1", "net-a") is not None
    finally:
        cache.quit()
