"""
Host network primitives.

Implements the NetworkPrimitives protocol against the running kernel:

- Links, addresses and routes through pyroute2 (IPRoute in the root
  namespace, NetNS inside a subnet namespace)
- Namespaces through pyroute2.netns
- Filter and NAT chains through the iptables binary
- Kernel toggles through /proc/sys

Every call reflects live state; nothing is cached except the netlink socket.
"""

from __future__ import annotations

import errno
import subprocess
from contextlib import contextmanager
from pathlib import Path

from vpcctl.exceptions import PrimitiveError
from vpcctl.net import iptables, links, sysctl
from vpcctl.net.base import ExecResult, KernelToggles, LinkInfo, RouteInfo
from vpcctl.net.rules import FilterRule
from vpcctl.utils.logger import get_logger

logger = get_logger(__name__)

# Exit status reported when a namespaced command exceeds its timeout
TIMEOUT_RETURNCODE = 124


class HostPrimitives:
    """
    Kernel-backed implementation of the primitive adapter.

    Owns no topology state. The lazily opened IPRoute socket is the only
    resource held between calls; call close() when done.
    """

    def __init__(self, proc_sys: Path = sysctl.PROC_SYS):
        self.proc_sys = proc_sys
        self._ipr = None

    def _get_ipr(self):
        """Get or create IPRoute instance."""
        if self._ipr is None:
            from pyroute2 import IPRoute

            self._ipr = IPRoute()
        return self._ipr

    @contextmanager
    def _handle(self, namespace: str | None = None):
        """Yield a netlink handle for the root namespace or a named one."""
        if namespace is None:
            yield self._get_ipr()
            return

        from pyroute2 import NetNS

        ns = NetNS(namespace)
        try:
            yield ns
        finally:
            ns.close()

    @contextmanager
    def _netlink(self, operation: str):
        """Translate netlink and lookup failures into PrimitiveError."""
        from pyroute2 import NetlinkError

        try:
            yield
        except NetlinkError as e:
            raise PrimitiveError(operation, str(e)) from e
        except (LookupError, OSError) as e:
            raise PrimitiveError(operation, str(e)) from e

    def close(self) -> None:
        """Close the IPRoute connection."""
        if self._ipr is not None:
            self._ipr.close()
            self._ipr = None

    # =========================================================================
    # Links
    # =========================================================================

    def link_exists(self, name: str) -> bool:
        return links.find_link_index(self._get_ipr(), name) is not None

    def list_links(self) -> list[LinkInfo]:
        return links.list_links_sync(self._get_ipr())

    def create_bridge(self, name: str, alias: str | None = None) -> None:
        with self._netlink(f"create bridge {name}"):
            links.create_bridge_sync(self._get_ipr(), name, alias)

    def create_veth(self, name: str, peer: str) -> None:
        with self._netlink(f"create veth {name}/{peer}"):
            links.create_veth_sync(self._get_ipr(), name, peer)

    def attach_to_bridge(self, name: str, bridge: str) -> None:
        with self._netlink(f"attach {name} to {bridge}"):
            links.attach_to_bridge_sync(self._get_ipr(), name, bridge)

    def move_to_namespace(self, name: str, namespace: str) -> None:
        with self._netlink(f"move {name} to {namespace}"):
            links.move_to_namespace_sync(self._get_ipr(), name, namespace)

    def set_link_up(self, name: str, namespace: str | None = None) -> None:
        with self._netlink(f"set {name} up"):
            with self._handle(namespace) as ipr:
                if not links.set_link_state_sync(ipr, name, "up"):
                    raise LookupError(f"link {name} not found")

    def set_link_down(self, name: str) -> bool:
        with self._netlink(f"set {name} down"):
            return links.set_link_state_sync(self._get_ipr(), name, "down")

    def delete_link(self, name: str) -> bool:
        from pyroute2 import NetlinkError

        try:
            return links.delete_link_sync(self._get_ipr(), name)
        except NetlinkError as e:
            # Removed concurrently, e.g. as the peer of a deleted veth
            if e.code == errno.ENODEV:
                return False
            raise PrimitiveError(f"delete link {name}", str(e)) from e

    def add_address(
        self, device: str, address: str, namespace: str | None = None
    ) -> None:
        with self._netlink(f"add address {address} to {device}"):
            with self._handle(namespace) as ipr:
                links.add_address_sync(ipr, device, address)

    def list_addresses(
        self, device: str | None = None, namespace: str | None = None
    ) -> list[str]:
        with self._netlink(f"list addresses of {device or 'all links'}"):
            with self._handle(namespace) as ipr:
                return links.list_addresses_sync(ipr, device)

    # =========================================================================
    # Namespaces
    # =========================================================================

    def namespace_exists(self, name: str) -> bool:
        return name in self.list_namespaces()

    def list_namespaces(self) -> list[str]:
        from pyroute2 import netns

        return sorted(netns.listnetns())

    def create_namespace(self, name: str) -> None:
        from pyroute2 import netns

        logger.info(f"Creating namespace: {name}")
        with self._netlink(f"create namespace {name}"):
            netns.create(name)

    def delete_namespace(self, name: str) -> bool:
        from pyroute2 import netns

        if not self.namespace_exists(name):
            return False
        with self._netlink(f"delete namespace {name}"):
            netns.remove(name)
        logger.info(f"Deleted namespace: {name}")
        return True

    def exec_in_namespace(
        self, namespace: str, argv: list[str], timeout: float | None = None
    ) -> ExecResult:
        cmd = ["ip", "netns", "exec", namespace] + argv
        logger.debug(f"Executing: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=timeout
            )
        except subprocess.TimeoutExpired:
            return ExecResult(TIMEOUT_RETURNCODE, stderr="timed out")
        except FileNotFoundError as e:
            raise PrimitiveError(" ".join(cmd), f"command not found: {e.filename}")
        return ExecResult(result.returncode, result.stdout, result.stderr)

    def tcp_connect(self, namespace: str, host: str, port: int, timeout: float) -> bool:
        """Attempt a TCP connection from inside a namespace (``nc -z``)."""
        argv = ["nc", "-z", "-w", str(max(1, int(timeout))), host, str(port)]
        result = self.exec_in_namespace(namespace, argv, timeout=timeout + 1)
        if not result.ok:
            logger.debug(
                f"TCP {host}:{port} from {namespace} failed: "
                f"{result.stderr.strip() or result.returncode}"
            )
        return result.ok

    # =========================================================================
    # Routes
    # =========================================================================

    def add_route(
        self,
        dst: str,
        device: str | None = None,
        gateway: str | None = None,
        namespace: str | None = None,
    ) -> None:
        with self._netlink(f"add route {dst}"):
            with self._handle(namespace) as ipr:
                links.add_route_sync(ipr, dst, device, gateway)

    def delete_route(self, dst: str) -> bool:
        from pyroute2 import NetlinkError

        try:
            self._get_ipr().route("del", dst=dst)
        except NetlinkError as e:
            if e.code in (errno.ESRCH, errno.ENOENT):
                return False
            raise PrimitiveError(f"delete route {dst}", str(e)) from e
        logger.info(f"Deleted route: {dst}")
        return True

    def list_routes(self, namespace: str | None = None) -> list[RouteInfo]:
        with self._netlink("list routes"):
            with self._handle(namespace) as ipr:
                return links.list_routes_sync(ipr)

    # =========================================================================
    # Filter chains
    # =========================================================================

    def rule_exists(self, rule: FilterRule, namespace: str | None = None) -> bool:
        return iptables.rule_exists_sync(rule, namespace)

    def append_rule(self, rule: FilterRule, namespace: str | None = None) -> None:
        iptables.append_rule_sync(rule, namespace)

    def insert_rule(
        self, rule: FilterRule, position: int = 1, namespace: str | None = None
    ) -> None:
        iptables.insert_rule_sync(rule, position, namespace)

    def delete_rule(self, rule: FilterRule, namespace: str | None = None) -> bool:
        return iptables.delete_rule_sync(rule, namespace)

    def flush_chain(
        self,
        chain: str | None = None,
        table: str = "filter",
        namespace: str | None = None,
    ) -> None:
        iptables.flush_sync(chain, table, namespace)

    def set_chain_policy(
        self, chain: str, policy: str, namespace: str | None = None
    ) -> None:
        iptables.set_policy_sync(chain, policy, namespace)

    # =========================================================================
    # Process-wide toggles
    # =========================================================================

    def set_ip_forwarding(self, enabled: bool) -> None:
        sysctl.write_sysctl(sysctl.IP_FORWARD, "1" if enabled else "0", self.proc_sys)

    def set_rp_filter(self, enabled: bool) -> None:
        sysctl.write_sysctl(sysctl.RP_FILTER, "1" if enabled else "0", self.proc_sys)

    def get_toggles(self) -> KernelToggles:
        def _flag(key):
            value = sysctl.read_sysctl(key, self.proc_sys)
            return None if value is None else value != "0"

        return KernelToggles(
            ip_forward=_flag(sysctl.IP_FORWARD),
            rp_filter=_flag(sysctl.RP_FILTER),
        )


# Global instance
_primitives: HostPrimitives | None = None


def get_host_primitives() -> HostPrimitives:
    """Get global HostPrimitives instance."""
    global _primitives
    if _primitives is None:
        _primitives = HostPrimitives()
    return _primitives
