"""
Topology resource specifications.

Each spec is an immutable description of a requested resource plus the names
and addresses derived from it:

- VPC: one bridge device carrying the router address
- Subnet: one namespace joined to its VPC bridge by a veth pair
    gateway  = first three octets of the subnet CIDR + ".1"
    interior = first three octets of the subnet CIDR + ".10"
- Peering: one veth pair named "{A}-to-{B}" / "{B}-to-{A}"

Linux interface names are limited to 15 characters. Subnet veth ends carry a
short hash of the subnet name so every subnet gets its own pair; peering names
must fit as-is, since they are parsed back into VPC names.
"""

from __future__ import annotations

import hashlib
import ipaddress
from dataclasses import dataclass

from vpcctl.models.enums import Visibility

IFNAMSIZ = 15

# Hex digits of the subnet name hash used in veth names
LINK_SUFFIX_LEN = 6


def subnet_link_prefix(vpc_name: str) -> str:
    """Name prefix shared by the bridge-side veth ends of a VPC's subnets."""
    return f"{vpc_name[: IFNAMSIZ - LINK_SUFFIX_LEN - 1]}-"


def _parse_interface(value: str, what: str) -> ipaddress.IPv4Interface:
    try:
        iface = ipaddress.IPv4Interface(value)
    except ValueError as e:
        raise ValueError(f"Invalid {what} '{value}': {e}")
    if "/" not in value:
        raise ValueError(f"Invalid {what} '{value}': prefix length required")
    return iface


def _parse_network(value: str, what: str) -> ipaddress.IPv4Network:
    try:
        return ipaddress.IPv4Network(value, strict=False)
    except ValueError as e:
        raise ValueError(f"Invalid {what} '{value}': {e}")


def _octet_prefix(network: ipaddress.IPv4Network) -> str:
    """First three octets of a network address, e.g. "10.0.1"."""
    return str(network.network_address).rsplit(".", 1)[0]


# =============================================================================
# VPC
# =============================================================================


@dataclass(frozen=True)
class VPCSpec:
    """A VPC: bridge name, router address (IP/mask) and address block."""

    name: str
    router_address: str  # "10.0.0.1/16"
    cidr: str  # "10.0.0.0/16"

    def __post_init__(self):
        if not self.name or len(self.name) > IFNAMSIZ:
            raise ValueError(
                f"VPC name '{self.name}' must be 1-{IFNAMSIZ} characters"
            )
        _parse_interface(self.router_address, "router address")
        _parse_network(self.cidr, "VPC CIDR")

    @property
    def bridge(self) -> str:
        return self.name

    @property
    def router(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface(self.router_address)

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(self.cidr, strict=False)


# =============================================================================
# Subnet
# =============================================================================


@dataclass(frozen=True)
class SubnetSpec:
    """A subnet: namespace name, CIDR, visibility and owning VPC name."""

    name: str
    cidr: str  # "10.0.1.0/24"
    visibility: Visibility
    vpc_name: str

    def __post_init__(self):
        if not self.name:
            raise ValueError("Subnet name must not be empty")
        _parse_network(self.cidr, "subnet CIDR")
        # Accept plain strings for visibility
        object.__setattr__(self, "visibility", Visibility(self.visibility))

    @property
    def namespace(self) -> str:
        return self.name

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(self.cidr, strict=False)

    @property
    def prefixlen(self) -> int:
        return self.network.prefixlen

    @property
    def gateway_ip(self) -> str:
        return f"{_octet_prefix(self.network)}.1"

    @property
    def interior_ip(self) -> str:
        return f"{_octet_prefix(self.network)}.10"

    @property
    def gateway_address(self) -> str:
        """Gateway address with mask, as assigned to the VPC bridge."""
        return f"{self.gateway_ip}/{self.prefixlen}"

    @property
    def interior_address(self) -> str:
        """Interior address with mask, as assigned inside the namespace."""
        return f"{self.interior_ip}/{self.prefixlen}"

    @property
    def link_suffix(self) -> str:
        digest = hashlib.sha256(self.name.encode("utf-8")).hexdigest()
        return digest[:LINK_SUFFIX_LEN]

    @property
    def ns_interface(self) -> str:
        """Namespace-side end of the subnet's veth pair."""
        return f"ns-{self.link_suffix}"

    @property
    def bridge_interface(self) -> str:
        """Bridge-side end of the subnet's veth pair."""
        return f"{subnet_link_prefix(self.vpc_name)}{self.link_suffix}"


# =============================================================================
# Peering
# =============================================================================


@dataclass(frozen=True)
class PeeringSpec:
    """An unordered VPC pair with the CIDR of each side."""

    vpc_a: str
    cidr_a: str
    vpc_b: str
    cidr_b: str

    def __post_init__(self):
        if self.vpc_a == self.vpc_b:
            raise ValueError(f"Cannot peer VPC '{self.vpc_a}' with itself")
        if len(self.link_a) > IFNAMSIZ:
            raise ValueError(
                f"Peering link name '{self.link_a}' exceeds {IFNAMSIZ} characters; "
                "use shorter VPC names"
            )
        _parse_network(self.cidr_a, "CIDR")
        _parse_network(self.cidr_b, "CIDR")

    @property
    def link_a(self) -> str:
        """Cable end attached to VPC A's bridge."""
        return peering_link_name(self.vpc_a, self.vpc_b)

    @property
    def link_b(self) -> str:
        """Cable end attached to VPC B's bridge."""
        return peering_link_name(self.vpc_b, self.vpc_a)

    @property
    def network_a(self) -> str:
        return str(ipaddress.IPv4Network(self.cidr_a, strict=False))

    @property
    def network_b(self) -> str:
        return str(ipaddress.IPv4Network(self.cidr_b, strict=False))


def peering_link_name(vpc_from: str, vpc_to: str) -> str:
    return f"{vpc_from}-to-{vpc_to}"
