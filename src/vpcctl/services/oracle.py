"""
Existence checks for topology resources.

Each check is a side-effect-free read of live state through the primitive
adapter, evaluated at call time:

- VPC: a link with the VPC's name exists (its bridge)
- Subnet: a namespace with the subnet's name exists
- Peering: a link "{A}-to-{B}" or "{B}-to-{A}" exists

The list_* helpers enumerate the same resources for clean and status.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from vpcctl.config import config
from vpcctl.models.topology import peering_link_name

if TYPE_CHECKING:
    from vpcctl.net.base import LinkInfo, NetworkPrimitives

PEERING_MARKER = "-to-"


class ExistenceOracle:
    """Answers "does resource X already exist" against live state."""

    def __init__(
        self,
        primitives: NetworkPrimitives,
        bridge_alias: str | None = None,
        bridge_pattern: str | None = None,
    ):
        self.primitives = primitives
        self.bridge_alias = (
            bridge_alias if bridge_alias is not None else config.BRIDGE_ALIAS
        )
        self.bridge_pattern = re.compile(
            bridge_pattern if bridge_pattern is not None else config.VPC_BRIDGE_PATTERN
        )

    def vpc_exists(self, name: str) -> bool:
        return self.primitives.link_exists(name)

    def subnet_exists(self, name: str) -> bool:
        return self.primitives.namespace_exists(name)

    def peering_exists(self, vpc_a: str, vpc_b: str) -> bool:
        return self.primitives.link_exists(
            peering_link_name(vpc_a, vpc_b)
        ) or self.primitives.link_exists(peering_link_name(vpc_b, vpc_a))

    # =========================================================================
    # Enumeration
    # =========================================================================

    def is_vpc_bridge(self, link: LinkInfo) -> bool:
        """A bridge stamped with our alias, or one whose name looks like a VPC."""
        if link.kind not in (None, "bridge"):
            return False
        if self.bridge_alias and link.alias == self.bridge_alias:
            return True
        return bool(self.bridge_pattern.match(link.name))

    def list_vpcs(self) -> list[str]:
        return sorted(
            link.name
            for link in self.primitives.list_links()
            if self.is_vpc_bridge(link)
        )

    def list_subnets(self) -> list[str]:
        return sorted(self.primitives.list_namespaces())

    def list_peerings(self) -> list[tuple[str, str]]:
        """Peered VPC pairs, each reported once as (A, B) with A < B."""
        pairs = set()
        for link in self.primitives.list_links():
            if PEERING_MARKER not in link.name:
                continue
            left, _, right = link.name.partition(PEERING_MARKER)
            pairs.add(tuple(sorted((left, right))))
        return sorted(pairs)
