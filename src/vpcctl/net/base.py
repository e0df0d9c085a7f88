"""
Primitive adapter capability surface.

The reconciler, oracle, policy compiler and prober depend only on this
protocol. HostPrimitives (vpcctl.net.host) implements it against the running
kernel; tests substitute an in-memory implementation.

Contract:
- Queries reflect live state at call time (no caching).
- Mutations raise PrimitiveError on failure.
- Deletions return False when the target is already absent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from vpcctl.net.rules import FilterRule


@dataclass
class LinkInfo:
    """A network link as seen in the root namespace."""

    name: str
    kind: str | None = None  # "bridge", "veth", ...
    alias: str | None = None
    master: str | None = None
    up: bool = False


@dataclass
class RouteInfo:
    """An IPv4 route. dst is "default" for the default route."""

    dst: str
    gateway: str | None = None
    device: str | None = None


@dataclass
class ExecResult:
    """Result of a command run inside a namespace."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class KernelToggles:
    """Process-wide kernel state touched by VPC creation and cleanup."""

    ip_forward: bool | None = None
    rp_filter: bool | None = None


class NetworkPrimitives(Protocol):
    """Bridge/link, namespace, route, filter-chain and toggle primitives."""

    # -- links ---------------------------------------------------------------

    def link_exists(self, name: str) -> bool: ...

    def list_links(self) -> list[LinkInfo]: ...

    def create_bridge(self, name: str, alias: str | None = None) -> None: ...

    def create_veth(self, name: str, peer: str) -> None: ...

    def attach_to_bridge(self, name: str, bridge: str) -> None: ...

    def move_to_namespace(self, name: str, namespace: str) -> None: ...

    def set_link_up(self, name: str, namespace: str | None = None) -> None: ...

    def set_link_down(self, name: str) -> bool: ...

    def delete_link(self, name: str) -> bool: ...

    def add_address(
        self, device: str, address: str, namespace: str | None = None
    ) -> None: ...

    def list_addresses(
        self, device: str | None = None, namespace: str | None = None
    ) -> list[str]: ...

    # -- namespaces ----------------------------------------------------------

    def namespace_exists(self, name: str) -> bool: ...

    def list_namespaces(self) -> list[str]: ...

    def create_namespace(self, name: str) -> None: ...

    def delete_namespace(self, name: str) -> bool: ...

    def exec_in_namespace(
        self, namespace: str, argv: list[str], timeout: float | None = None
    ) -> ExecResult: ...

    def tcp_connect(
        self, namespace: str, host: str, port: int, timeout: float
    ) -> bool: ...

    # -- routes --------------------------------------------------------------

    def add_route(
        self,
        dst: str,
        device: str | None = None,
        gateway: str | None = None,
        namespace: str | None = None,
    ) -> None: ...

    def delete_route(self, dst: str) -> bool: ...

    def list_routes(self, namespace: str | None = None) -> list[RouteInfo]: ...

    # -- filter chains -------------------------------------------------------

    def rule_exists(self, rule: FilterRule, namespace: str | None = None) -> bool: ...

    def append_rule(self, rule: FilterRule, namespace: str | None = None) -> None: ...

    def insert_rule(
        self, rule: FilterRule, position: int = 1, namespace: str | None = None
    ) -> None: ...

    def delete_rule(self, rule: FilterRule, namespace: str | None = None) -> bool: ...

    def flush_chain(
        self,
        chain: str | None = None,
        table: str = "filter",
        namespace: str | None = None,
    ) -> None: ...

    def set_chain_policy(
        self, chain: str, policy: str, namespace: str | None = None
    ) -> None: ...

    # -- process-wide toggles ------------------------------------------------

    def set_ip_forwarding(self, enabled: bool) -> None: ...

    def set_rp_filter(self, enabled: bool) -> None: ...

    def get_toggles(self) -> KernelToggles: ...
