import pytest

from network_resources_injector.exceptions import NetworkSelectionError
from network_resources_injector.webhook.network import NetworkSelection, parse_network_selections


def test_short_form_with_namespace_and_interface():
    selections = parse_network_selections("other/net-a@eth1, net-b", "ns1")
    assert selections == [
        NetworkSelection(name="net-a", namespace="other", interface_request="eth1"),
        NetworkSelection(name="net-b", namespace="ns1"),
    ]


def test_json_list():
    value = '[{"name": "net-a"}, {"name": "net-b", "namespace": "other", "interface": "net1"}]'
    selections = parse_network_selections(value, "ns1")
    assert selections == [
        NetworkSelection(name="net-a", namespace="ns1"),
        NetworkSelection(name="net-b", namespace="other", interface_request="net1"),
    ]


def test_json_element_without_name_is_kept_with_empty_name():
    selections = parse_network_selections('[{"namespace": "ns1"}]', "ns1")
    assert selections == [NetworkSelection(name="", namespace="ns1")]


def test_json_element_with_non_string_field_is_rejected():
    with pytest.raises(NetworkSelectionError):
        parse_network_selections('[{"name": "net-a", "interface": 1}]', "ns1")


@pytest.mark.parametrize(
    "value",
    [
        "ns1/extra/net-a",
        "net-a@eth1@eth2",
        "Net-A",
        "ns_1/net-a",
        "net-a@-eth1",
    ],
)
def test_malformed_short_form_is_rejected(value):
    with pytest.raises(NetworkSelectionError):
        parse_network_selections(value, "ns1")


def test_empty_value_is_rejected():
    with pytest.raises(NetworkSelectionError):
        parse_network_selections("", "ns1")


def test_missing_namespace_without_default_skips():
    assert parse_network_selections("net-a", "") is None


def test_explicit_namespace_without_default_is_kept():
    assert parse_network_selections("ns1/net-a", "") == [NetworkSelection(name="net-a", namespace="ns1")]
