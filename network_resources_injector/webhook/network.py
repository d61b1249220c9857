"""
Network selection parsing.

A selection annotation is either a JSON list of objects::

    [{"name": "net-a", "namespace": "ns1", "interface": "eth1"}]

or a comma separated list of ``[namespace/]name[@interface]`` tokens.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from ..core.logging import get_logger
from ..exceptions import NetworkSelectionError

logger = get_logger(__name__)

VALID_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


@dataclass
class NetworkSelection:
    name: str
    namespace: str = ""
    interface_request: str = ""


def _from_json(value: str) -> Optional[List[NetworkSelection]]:
    """Selections from a JSON list, or None when the value is not a JSON list."""
    try:
        raw: Any = json.loads(value)
    except ValueError:
        return None
    if not isinstance(raw, list) or not all(isinstance(item, dict) for item in raw):
        return None

    selections = []
    for item in raw:
        # a missing name is left for the attachment lookup to refuse
        name = item.get("name") or ""
        namespace = item.get("namespace") or ""
        interface = item.get("interface") or ""
        if not all(isinstance(field, str) for field in (name, namespace, interface)):
            raise NetworkSelectionError(f"invalid network selection element: '{json.dumps(item)}'")
        selections.append(NetworkSelection(name=name, namespace=namespace, interface_request=interface))
    return selections


def parse_selection_element(selection: str, default_namespace: str) -> NetworkSelection:
    """Parse one ``[namespace/]name[@interface]`` token."""
    units = selection.split("/")
    if len(units) == 1:
        namespace, name = default_namespace, units[0]
    elif len(units) == 2:
        namespace, name = units
    else:
        raise NetworkSelectionError(f"invalid network selection element - more than one '/' rune in: '{selection}'")

    units = name.split("@")
    if len(units) == 1:
        interface = ""
    elif len(units) == 2:
        name, interface = units
    else:
        raise NetworkSelectionError(f"invalid network selection element - more than one '@' rune in: '{selection}'")

    for unit in (namespace, name, interface):
        if unit and not VALID_NAME_RE.match(unit):
            raise NetworkSelectionError(
                f"at least one of the network selection units is invalid: error found at '{unit}'"
            )

    return NetworkSelection(name=name, namespace=namespace, interface_request=interface)


def parse_network_selections(value: str, default_namespace: str) -> Optional[List[NetworkSelection]]:
    """
    Parse a selection annotation value.

    Selections without a namespace get ``default_namespace``. Returns None when
    a selection has no namespace and ``default_namespace`` is empty: the Pod
    cannot be resolved and mutation is skipped.

    Raises:
        NetworkSelectionError: the value is empty or a token is malformed
    """
    if not value:
        raise NetworkSelectionError("empty string passed as network selection elements list")

    selections = _from_json(value)
    if selections is None:
        logger.debug("'%s' is not in JSON format, parsing as comma separated network selections list", value)
        try:
            selections = [
                parse_selection_element(token.strip(), default_namespace) for token in value.split(",")
            ]
        except NetworkSelectionError as exc:
            logger.error("error parsing network selection element: %s", exc.message)
            raise

    for selection in selections:
        if not selection.namespace:
            if not default_namespace:
                logger.warning("The admission request doesn't contain a valid namespace, ignoring...")
                return None
            selection.namespace = default_namespace
    return selections
