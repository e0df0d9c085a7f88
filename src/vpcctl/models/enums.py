"""
Enumeration types for vpcctl.

This module defines the enumeration types shared by the policy document, the
topology models and the configuration.
"""

from enum import Enum


# =============================================================================
# Topology Enums
# =============================================================================


class Visibility(str, Enum):
    """
    Subnet visibility.

    - PUBLIC: reaches the internet through the VPC-level NAT rules
    - PRIVATE: confined to its VPC's address block
    """

    PUBLIC = "public"
    PRIVATE = "private"


# =============================================================================
# Policy Enums
# =============================================================================


class RuleAction(str, Enum):
    """Security policy rule action."""

    ALLOW = "allow"
    DENY = "deny"

    @classmethod
    def normalize(cls, value) -> "RuleAction":
        """Map a raw action to ALLOW or DENY. Anything unrecognized is DENY."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().lower() == cls.ALLOW.value:
            return cls.ALLOW
        return cls.DENY

    @property
    def target(self) -> str:
        """iptables jump target for this action."""
        return "ACCEPT" if self is RuleAction.ALLOW else "DROP"


class Direction(str, Enum):
    """Traffic direction of a security policy rule."""

    INGRESS = "ingress"
    EGRESS = "egress"

    @property
    def chain(self) -> str:
        """Namespace filter chain that carries rules of this direction."""
        return "INPUT" if self is Direction.INGRESS else "OUTPUT"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """Logging verbosity."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
