import json

from kubernetes.client.rest import ApiException

from network_resources_injector.core.signal import ServiceState
from network_resources_injector.patch.operations import StringMap
from network_resources_injector.services.udi import UserDefinedInjectionUpdater, UserDefinedInjections


def _annotation_patch(annotations):
    return json.dumps({"op": "add", "path": "/metadata/annotations", "value": annotations})


NETWORKS_PATCH = _annotation_patch({"k8s.v1.cni.cncf.io/networks": "sriov-net"})


# ---------------------------------------------------------------------------
# store
# ---------------------------------------------------------------------------

def test_set_injections_stores_valid_entries():
    store = UserDefinedInjections()
    store.set_injections({"feature.sriov": NETWORKS_PATCH})

    patches = store.patches
    assert list(patches) == ["feature.sriov"]
    assert patches["feature.sriov"].value == StringMap({"k8s.v1.cni.cncf.io/networks": "sriov-net"})


def test_set_injections_skips_invalid_entries():
    store = UserDefinedInjections()
    store.set_injections(
        {
            "bad-json": "{not json",
            "bad-path": json.dumps({"op": "add", "path": "/spec/nodeSelector", "value": {"a": "b"}}),
            "bad-op": json.dumps({"op": "remove", "path": "/metadata/annotations"}),
            "good": NETWORKS_PATCH,
        }
    )
    assert list(store.patches) == ["good"]


def test_unchanged_entries_are_not_rewritten():
    store = UserDefinedInjections()
    store.set_injections({"a": NETWORKS_PATCH})
    first = store.patches["a"]

    store.set_injections({"a": NETWORKS_PATCH})
    assert store.patches["a"] is first


def test_changed_entries_are_replaced_and_stale_removed():
    store = UserDefinedInjections()
    store.set_injections({"a": NETWORKS_PATCH, "b": NETWORKS_PATCH})

    store.set_injections({"a": _annotation_patch({"x": "y"})})

    patches = store.patches
    assert list(patches) == ["a"]
    assert patches["a"].value == StringMap({"x": "y"})


def test_missing_configmap_clears_store():
    store = UserDefinedInjections()
    store.set_injections({"a": NETWORKS_PATCH})
    store.set_injections(None)
    assert store.patches == {}


def test_customized_patch_requires_true_label():
    store = UserDefinedInjections()
    store.set_injections({"a": NETWORKS_PATCH, "b": _annotation_patch({"x": "y"}), "c": _annotation_patch({})})

    selected = store.create_customized_patch({"a": "TRUE", "b": "false"})
    assert [op.value for op in selected] == [StringMap({"k8s.v1.cni.cncf.io/networks": "sriov-net"})]
    assert store.create_customized_patch({}) == []


# ---------------------------------------------------------------------------
# updater
# ---------------------------------------------------------------------------

def _updater(kube_client, store, interval=60.0):
    return UserDefinedInjectionUpdater(
        kube_client, store, namespace="kube-system", configmap_name="nri-udi", interval=interval, timeout=2.0
    )


def test_refresh_reads_configmap(kube_client):
    kube_client.get_config_map_data.return_value = {"a": NETWORKS_PATCH}
    store = UserDefinedInjections()

    assert _updater(kube_client, store).refresh() is True
    kube_client.get_config_map_data.assert_called_once_with("kube-system", "nri-udi")
    assert list(store.patches) == ["a"]


def test_refresh_keeps_store_on_api_error(kube_client):
    store = UserDefinedInjections()
    store.set_injections({"a": NETWORKS_PATCH})
    kube_client.get_config_map_data.side_effect = ApiException(status=500, reason="boom")

    assert _updater(kube_client, store).refresh() is False
    assert list(store.patches) == ["a"]


def test_updater_polls_immediately_and_stops(kube_client):
    kube_client.get_config_map_data.return_value = {"a": NETWORKS_PATCH}
    store = UserDefinedInjections()
    updater = _updater(kube_client, store)

    updater.run()
    try:
        updater.status_signal().wait_until_opened(1.0)
    finally:
        updater.quit()

    assert updater.state is ServiceState.STOPPED
    assert kube_client.get_config_map_data.call_count >= 1
    assert list(store.patches) == ["a"]
