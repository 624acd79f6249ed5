"""
Structure transformer: flat KV entries → nested baseline/satellite topology.

Only keys shaped ``composite/<id>/structure/<namespace>/<attribute>`` take part;
everything else under the watched prefix is ignored. Recognized attributes:

- ``compositeRole``: ``baseline`` | ``satellite`` (case-insensitive)
- ``bluegreenRole``: ``controller`` | ``origin`` | ``peer`` (case-insensitive)
- ``controllerNamespace``: name of the controller namespace of the group

An unrecognized role value fails the whole transform with
``StructureParseError``; partial results are never returned.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from loguru import logger

from consul_kv import Snapshot

from ..errors import StructureParseError
from ..metrics import TOPOLOGY_TRANSFORM_TOTAL
from .models import CompositeStructure, CompositeStructurePayload, NamespaceRoles

STRUCTURE_KEY_PATTERN = re.compile(
    r"^composite/[^/]+/structure/(?P<namespace>[^/]+)/(?P<attribute>[^/]+)$"
)

DEFAULT_CLOUD_PROVIDER = "OnPrem"
DEFAULT_CLOUD_OIDC_PROXY_URL = "http://super-proxy.namespace:8080"

# attribute names are matched case-insensitively
ATTR_COMPOSITE_ROLE = "compositerole"
ATTR_BLUE_GREEN_ROLE = "bluegreenrole"
ATTR_CONTROLLER_NAMESPACE = "controllernamespace"

KvEntries = Union[Snapshot, Mapping[str, Optional[str]], Iterable[Tuple[str, Optional[str]]]]


class CompositeRole(str, Enum):
    BASELINE = "baseline"
    SATELLITE = "satellite"


class BlueGreenRole(str, Enum):
    CONTROLLER = "controller"
    ORIGIN = "origin"
    PEER = "peer"


E = TypeVar("E", CompositeRole, BlueGreenRole)


@dataclass(frozen=True)
class NamespaceEntry:
    name: str
    composite_role: Optional[CompositeRole]
    blue_green_role: Optional[BlueGreenRole]
    controller_namespace: Optional[str]

    @property
    def satellite_key(self) -> str:
        # own name first when this namespace is the controller itself
        if self.blue_green_role is BlueGreenRole.CONTROLLER:
            return self.name
        if self.controller_namespace and self.controller_namespace.strip():
            return self.controller_namespace.strip()
        return self.name


def _pairs(entries: KvEntries) -> list[Tuple[str, Optional[str]]]:
    if isinstance(entries, Snapshot):
        return entries.items()
    if isinstance(entries, Mapping):
        return list(entries.items())
    return list(entries)


def _parse_enum(enum_cls: Type[E], value: Optional[str], field: str) -> Optional[E]:
    if value is None or not value.strip():
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        raise StructureParseError(field, value) from None


def parse_namespaces(entries: KvEntries) -> list[NamespaceEntry]:
    """Group matching entries per namespace and parse their roles."""
    attrs: dict[str, dict[str, Optional[str]]] = defaultdict(dict)

    # ascending key order: on attribute collision the largest key wins
    for key, value in sorted(_pairs(entries), key=lambda kv: (kv[0], kv[1] or "")):
        m = STRUCTURE_KEY_PATTERN.match(key)
        if not m:
            continue
        attrs[m.group("namespace")][m.group("attribute").lower()] = value

    namespaces = []
    for name in sorted(attrs):
        a = attrs[name]
        namespaces.append(
            NamespaceEntry(
                name=name,
                composite_role=_parse_enum(CompositeRole, a.get(ATTR_COMPOSITE_ROLE), "compositeRole"),
                blue_green_role=_parse_enum(BlueGreenRole, a.get(ATTR_BLUE_GREEN_ROLE), "bluegreenRole"),
                controller_namespace=a.get(ATTR_CONTROLLER_NAMESPACE),
            )
        )
    return namespaces


def _first_with_role(group: Sequence[NamespaceEntry], role: Optional[BlueGreenRole]) -> Optional[str]:
    names = sorted(ns.name for ns in group if ns.blue_green_role is role)
    if len(names) > 1:
        logger.warning(f"Multiple namespaces with blue-green role '{role}': {names}; using '{names[0]}'")
    return names[0] if names else None


def build_roles(group: Sequence[NamespaceEntry]) -> Optional[NamespaceRoles]:
    """Resolve controller/origin/peer of one group; None when nothing resolves."""
    if not group:
        return None
    controller = _first_with_role(group, BlueGreenRole.CONTROLLER)
    peer = _first_with_role(group, BlueGreenRole.PEER)
    origin = _first_with_role(group, BlueGreenRole.ORIGIN)
    if origin is None:
        # no blue-green domain: the namespace without a role is the origin
        origin = _first_with_role(group, None)

    roles = NamespaceRoles(controller=controller, origin=origin, peer=peer)
    return None if roles.is_empty else roles


class StructureTransformer:
    """Parses KV entries into ``CompositeStructure`` and wraps it in the payload.

    Deterministic: the same KV set always yields byte-identical JSON.
    """

    def __init__(
        self,
        cloud_provider: str = DEFAULT_CLOUD_PROVIDER,
        cloud_oidc_proxy_url: str = DEFAULT_CLOUD_OIDC_PROXY_URL,
    ) -> None:
        self.cloud_provider = cloud_provider
        self.cloud_oidc_proxy_url = cloud_oidc_proxy_url

    def transform(self, entries: KvEntries) -> CompositeStructure:
        try:
            namespaces = parse_namespaces(entries)
        except StructureParseError:
            TOPOLOGY_TRANSFORM_TOTAL.labels("parse_error").inc()
            raise
        logger.debug(f"Parsed {len(namespaces)} namespaces from KV data")

        baseline = build_roles(
            [ns for ns in namespaces if ns.composite_role is CompositeRole.BASELINE]
        )

        satellite_groups: dict[str, list[NamespaceEntry]] = defaultdict(list)
        for ns in namespaces:
            if ns.composite_role is CompositeRole.SATELLITE:
                satellite_groups[ns.satellite_key].append(ns)

        satellites = []
        for key in sorted(satellite_groups):
            roles = build_roles(satellite_groups[key])
            if roles is not None:
                satellites.append(roles)

        TOPOLOGY_TRANSFORM_TOTAL.labels("ok").inc()
        return CompositeStructure(baseline=baseline, satellites=satellites)

    def to_payload(self, entries: KvEntries) -> CompositeStructurePayload:
        return CompositeStructurePayload(
            cloud_provider=self.cloud_provider,
            cloud_oidc_proxy_url=self.cloud_oidc_proxy_url,
            composite=self.transform(entries),
        )
