"""
Primitive adapter subpackage.

Re-exports the capability protocol and its kernel-backed implementation:
    from vpcctl.net import NetworkPrimitives, HostPrimitives
"""

from vpcctl.net.base import (
    ExecResult,
    KernelToggles,
    LinkInfo,
    NetworkPrimitives,
    RouteInfo,
)
from vpcctl.net.host import HostPrimitives, get_host_primitives
from vpcctl.net.rules import FilterRule

__all__ = [
    "ExecResult",
    "FilterRule",
    "HostPrimitives",
    "KernelToggles",
    "LinkInfo",
    "NetworkPrimitives",
    "RouteInfo",
    "get_host_primitives",
]
