"""
Pydantic models for the security policy document.

The document is a JSON list of subnet policy groups:

    [
      {
        "name": "web_ns",
        "ingress": [
          {"port": 80, "protocol": "tcp", "source": "0.0.0.0/0", "action": "allow"},
          {"port": "all", "protocol": "icmp", "action": "allow"}
        ],
        "egress": [
          {"port": "all", "protocol": "all", "action": "allow"}
        ]
      }
    ]

Rule order is preserved: compiled chains are evaluated first-match.
"""

import ipaddress
from typing import Literal

from pydantic import BaseModel, Field, RootModel, field_validator, model_validator

from vpcctl.models.enums import RuleAction

# Counterpart used when a rule names no source/destination
ANY_ADDRESS = "0.0.0.0/0"

# Port sentinel meaning "do not scope the directive to a port"
ALL_PORTS = "all"

# Protocols iptables can match a destination port for
PORT_PROTOCOLS = ("tcp", "udp", "sctp")


# =============================================================================
# Rule Models
# =============================================================================


class PolicyRule(BaseModel):
    """Fields shared by ingress and egress rules."""

    port: Literal["all"] | int = Field(
        default=ALL_PORTS, description='Destination port or "all"'
    )
    protocol: str = Field(default="all", description="Transport protocol")
    action: RuleAction = Field(
        default=RuleAction.DENY, description="allow or deny (anything else is deny)"
    )

    @field_validator("port", mode="before")
    @classmethod
    def parse_port(cls, value):
        if value is None:
            return ALL_PORTS
        if isinstance(value, str):
            value = value.strip().lower()
            if value == ALL_PORTS:
                return ALL_PORTS
            if not value.isdigit():
                raise ValueError(f"port must be 'all' or a number, got {value!r}")
            value = int(value)
        if isinstance(value, int) and not 0 < value < 65536:
            raise ValueError(f"port {value} out of range")
        return value

    @field_validator("protocol", mode="before")
    @classmethod
    def parse_protocol(cls, value):
        if value is None:
            return "all"
        return str(value).strip().lower()

    @field_validator("action", mode="before")
    @classmethod
    def parse_action(cls, value):
        return RuleAction.normalize(value)

    @model_validator(mode="after")
    def check_port_protocol(self):
        if self.port != ALL_PORTS and self.protocol not in PORT_PROTOCOLS:
            raise ValueError(
                f"port {self.port} needs protocol tcp, udp or sctp, "
                f"got {self.protocol!r}"
            )
        return self

    @property
    def scoped_port(self) -> int | None:
        """Port to match on, or None for the "all" sentinel."""
        return None if self.port == ALL_PORTS else self.port


def _parse_address(value) -> str:
    if value is None or value == "":
        return ANY_ADDRESS
    try:
        return str(ipaddress.ip_network(str(value).strip(), strict=False))
    except ValueError as e:
        raise ValueError(f"invalid address {value!r}: {e}")


class IngressRule(PolicyRule):
    """Inbound rule; the counterpart is the traffic source."""

    source: str = Field(default=ANY_ADDRESS, description="Source CIDR")

    @field_validator("source", mode="before")
    @classmethod
    def parse_source(cls, value):
        return _parse_address(value)

    @property
    def counterpart(self) -> str:
        return self.source


class EgressRule(PolicyRule):
    """Outbound rule; the counterpart is the traffic destination."""

    destination: str = Field(default=ANY_ADDRESS, description="Destination CIDR")

    @field_validator("destination", mode="before")
    @classmethod
    def parse_destination(cls, value):
        return _parse_address(value)

    @property
    def counterpart(self) -> str:
        return self.destination


# =============================================================================
# Document Models
# =============================================================================


class SubnetPolicy(BaseModel):
    """Ordered ingress and egress rules for one subnet."""

    name: str = Field(..., description="Subnet identifier")
    ingress: list[IngressRule] = Field(default_factory=list)
    egress: list[EgressRule] = Field(default_factory=list)

    @field_validator("ingress", "egress", mode="before")
    @classmethod
    def null_is_empty(cls, value):
        return [] if value is None else value


class PolicyDocument(RootModel[list[SubnetPolicy]]):
    """The whole policy document."""

    def get(self, subnet_name: str) -> SubnetPolicy | None:
        """Return the first policy group for a subnet, or None."""
        for group in self.root:
            if group.name == subnet_name:
                return group
        return None

    def names(self) -> list[str]:
        return [group.name for group in self.root]
