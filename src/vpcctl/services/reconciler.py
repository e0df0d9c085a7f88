"""
Topology reconciliation engine.

Brings live host networking to the requested state one resource at a time:

    create_vpc   bridge + router address + forwarding baseline
    enable_nat   masquerade + forward rules for a VPC
    add_subnet   namespace + veth + addressing + security policy
    peer_vpcs    peering veth + static routes + filtered forwarding
    clean        remove everything, restore kernel defaults

Every operation checks live state before each mutation, so re-running with the
same arguments adds nothing. A failure part-way through an operation leaves
the completed steps in place; re-running the operation finishes the rest.

Forward chain layout (first match wins, default policy DROP):

    [private subnet -> external]   DROP     (inserted at the top)
    [vpc bridge -> external]       ACCEPT
    [external -> vpc bridge]       ACCEPT   established/related only
    [private subnet <-> vpc block] ACCEPT
    [peer A <-> peer B]            ACCEPT   established/related
    [peer A <-> peer B icmp]       ACCEPT
    [peer A <-> peer B]            DROP
"""

from __future__ import annotations

import fcntl
import ipaddress
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING

from vpcctl.config import config
from vpcctl.exceptions import (
    DependencyMissingError,
    PrimitiveError,
    ResourceCreationError,
    VpcctlError,
)
from vpcctl.models.enums import Visibility
from vpcctl.models.topology import (
    PeeringSpec,
    SubnetSpec,
    VPCSpec,
    subnet_link_prefix,
)
from vpcctl.net.rules import ESTABLISHED_RELATED, FilterRule
from vpcctl.services.oracle import PEERING_MARKER, ExistenceOracle
from vpcctl.services.policy import PolicyCompiler
from vpcctl.utils.logger import format_traceback, get_logger

if TYPE_CHECKING:
    from vpcctl.net.base import NetworkPrimitives

logger = get_logger(__name__)

# Upper bound when removing repeated copies of a route or rule
MAX_DUPLICATES = 64


# =============================================================================
# Results
# =============================================================================


@dataclass
class ReconcileResult:
    """Outcome of one reconcile operation."""

    resource: str
    created: bool = False
    actions: list[str] = field(default_factory=list)

    def record(self, action: str) -> None:
        self.actions.append(action)

    @property
    def changed(self) -> bool:
        return bool(self.actions)


@dataclass
class CleanupReport:
    """What clean removed, plus any step that failed for a reason other than absence."""

    bridges: list[str] = field(default_factory=list)
    namespaces: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    routes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


# =============================================================================
# Rule Sets
# =============================================================================


def nat_rules(vpc_name: str, cidr: str, external_iface: str) -> list[FilterRule]:
    """Masquerade plus the two forward rules that let a VPC reach outside."""
    return [
        FilterRule(
            chain="POSTROUTING",
            target="MASQUERADE",
            table="nat",
            source=cidr,
            out_iface=external_iface,
        ),
        FilterRule(
            chain="FORWARD",
            target="ACCEPT",
            in_iface=vpc_name,
            out_iface=external_iface,
        ),
        FilterRule(
            chain="FORWARD",
            target="ACCEPT",
            in_iface=external_iface,
            out_iface=vpc_name,
            ctstate=ESTABLISHED_RELATED,
        ),
    ]


def private_subnet_rules(
    subnet_cidr: str, vpc_block: str, external_iface: str
) -> tuple[list[FilterRule], FilterRule]:
    """Intra-VPC allow rules and the explicit external deny for a private subnet."""
    allow = [
        FilterRule(
            chain="FORWARD", target="ACCEPT", source=subnet_cidr, destination=vpc_block
        ),
        FilterRule(
            chain="FORWARD", target="ACCEPT", source=vpc_block, destination=subnet_cidr
        ),
    ]
    deny = FilterRule(
        chain="FORWARD", target="DROP", source=subnet_cidr, out_iface=external_iface
    )
    return allow, deny


def peering_rules(cidr_a: str, cidr_b: str) -> list[FilterRule]:
    """Peering filter rules in evaluation order."""
    pairs = [(cidr_a, cidr_b), (cidr_b, cidr_a)]
    established = [
        FilterRule(
            chain="FORWARD",
            target="ACCEPT",
            source=src,
            destination=dst,
            ctstate=ESTABLISHED_RELATED,
        )
        for src, dst in pairs
    ]
    icmp = [
        FilterRule(
            chain="FORWARD",
            target="ACCEPT",
            protocol="icmp",
            source=src,
            destination=dst,
        )
        for src, dst in pairs
    ]
    deny = [
        FilterRule(chain="FORWARD", target="DROP", source=src, destination=dst)
        for src, dst in pairs
    ]
    return established + icmp + deny


def _network(cidr: str) -> str:
    return str(ipaddress.IPv4Network(cidr, strict=False))


# =============================================================================
# Reconciler
# =============================================================================


class TopologyReconciler:
    """
    Orchestrates VPC, subnet, NAT and peering creation and global teardown.

    Operations are serialized through an exclusive lock on the configured lock
    file, so two vpcctl processes never interleave mutations.
    """

    def __init__(
        self,
        primitives: NetworkPrimitives,
        compiler: PolicyCompiler | None = None,
        oracle: ExistenceOracle | None = None,
        external_iface: str | None = None,
        bridge_alias: str | None = None,
        clean_route_cidrs: list[str] | None = None,
        lock_file: str | None = None,
    ):
        self.primitives = primitives
        self.compiler = compiler or PolicyCompiler(primitives, config.POLICY_FILE)
        self.external_iface = external_iface or config.EXTERNAL_IFACE
        self.bridge_alias = (
            bridge_alias if bridge_alias is not None else config.BRIDGE_ALIAS
        )
        self.oracle = oracle or ExistenceOracle(
            primitives, bridge_alias=self.bridge_alias
        )
        self.clean_route_cidrs = [
            ipaddress.IPv4Network(c, strict=False)
            for c in (
                clean_route_cidrs
                if clean_route_cidrs is not None
                else config.CLEAN_ROUTE_CIDRS
            )
        ]
        self.lock_file = lock_file

    @contextmanager
    def _lock(self):
        """Hold an exclusive flock on the lock file for one operation."""
        if not self.lock_file:
            yield
            return

        try:
            fd = os.open(self.lock_file, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise VpcctlError(f"Cannot open lock file {self.lock_file}: {e}") from e
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _ensure_rule(self, rule: FilterRule, result: ReconcileResult) -> None:
        """Append a rule unless an identical one is already present."""
        if self.primitives.rule_exists(rule):
            logger.info(f"iptables rule already exists: {rule}")
            return
        self.primitives.append_rule(rule)
        result.record(f"add rule {rule}")

    # =========================================================================
    # VPC
    # =========================================================================

    def create_vpc(self, name: str, router_address: str, cidr: str) -> ReconcileResult:
        """
        Create a VPC bridge with its router address.

        Also sets the process-wide forwarding baseline: IP forwarding on,
        reverse-path filtering off, FORWARD policy DROP.
        """
        spec = VPCSpec(name, router_address, cidr)
        result = ReconcileResult(resource=name)

        with self._lock():
            if self.oracle.vpc_exists(name):
                logger.info(f"VPC {name} already exists, skipping creation")
                return result

            logger.info(
                f"Creating VPC router {name} ({router_address}) "
                f"with CIDR {spec.network}"
            )
            try:
                self.primitives.create_bridge(spec.bridge, alias=self.bridge_alias)
            except PrimitiveError as e:
                raise ResourceCreationError(f"bridge {name}", e.detail) from e
            result.record(f"create bridge {name}")

            self.primitives.add_address(spec.bridge, spec.router_address)
            self.primitives.set_link_up(spec.bridge)
            result.record(f"assign {router_address} to {name}")

            self.primitives.set_ip_forwarding(True)
            self.primitives.set_rp_filter(False)
            self.primitives.set_chain_policy("FORWARD", "DROP")
            result.record("enable forwarding, disable rp_filter, FORWARD policy DROP")

            result.created = True
            logger.info(f"VPC {name} created. RPF disabled. FORWARD policy is DROP.")
            return result

    def enable_nat(self, vpc_name: str, cidr: str) -> ReconcileResult:
        """Ensure masquerade and forward rules give a VPC outbound access."""
        result = ReconcileResult(resource=vpc_name)

        with self._lock():
            if not self.oracle.vpc_exists(vpc_name):
                raise DependencyMissingError("VPC", vpc_name)

            logger.info(
                f"Enabling NAT for VPC {vpc_name} ({cidr}) via {self.external_iface}"
            )
            for rule in nat_rules(vpc_name, _network(cidr), self.external_iface):
                self._ensure_rule(rule, result)

            logger.info(f"NAT enabled for VPC {vpc_name} via {self.external_iface}")
            return result

    # =========================================================================
    # Subnet
    # =========================================================================

    def add_subnet(
        self, name: str, cidr: str, visibility: Visibility | str, vpc_name: str
    ) -> ReconcileResult:
        """
        Create a subnet namespace inside a VPC, or refresh its policy.

        For an existing subnet only the security policy is re-applied.
        """
        spec = SubnetSpec(name, cidr, Visibility(visibility), vpc_name)
        result = ReconcileResult(resource=name)

        with self._lock():
            if self.oracle.subnet_exists(name):
                logger.info(
                    f"Subnet {name} already exists, reapplying security policy"
                )
                self.compiler.apply(name)
                result.record(f"reapply policy for {name}")
                return result

            if not self.oracle.vpc_exists(vpc_name):
                raise DependencyMissingError("VPC", vpc_name)

            logger.info(
                f"Adding subnet {name} ({spec.network}) under {vpc_name} "
                f"as {spec.visibility.value}"
            )
            self._create_namespace(spec, result)
            self._connect_namespace(spec, result)
            self._configure_namespace(spec, result)
            self._ensure_gateway(spec, result)

            self.compiler.apply(name)
            result.record(f"apply policy for {name}")

            if spec.visibility is Visibility.PRIVATE:
                self._isolate_private_subnet(spec, result)
            else:
                # NAT is VPC-scoped; nothing subnet-specific to add
                logger.info(f"Subnet {name} configured as PUBLIC")

            result.created = True
            return result

    def _create_namespace(self, spec: SubnetSpec, result: ReconcileResult) -> None:
        try:
            self.primitives.create_namespace(spec.namespace)
        except PrimitiveError as e:
            raise ResourceCreationError(f"namespace {spec.namespace}", e.detail) from e
        self.primitives.set_chain_policy("INPUT", "DROP", namespace=spec.namespace)
        self.primitives.set_chain_policy("OUTPUT", "DROP", namespace=spec.namespace)
        result.record(f"create namespace {spec.namespace} (INPUT/OUTPUT DROP)")

    def _connect_namespace(self, spec: SubnetSpec, result: ReconcileResult) -> None:
        try:
            self.primitives.create_veth(spec.bridge_interface, spec.ns_interface)
        except PrimitiveError as e:
            raise ResourceCreationError(
                f"veth {spec.bridge_interface}/{spec.ns_interface}", e.detail
            ) from e
        self.primitives.attach_to_bridge(spec.bridge_interface, spec.vpc_name)
        self.primitives.set_link_up(spec.bridge_interface)
        self.primitives.move_to_namespace(spec.ns_interface, spec.namespace)
        result.record(f"connect {spec.namespace} to {spec.vpc_name}")

    def _configure_namespace(self, spec: SubnetSpec, result: ReconcileResult) -> None:
        ns = spec.namespace
        self.primitives.set_link_up("lo", namespace=ns)
        self.primitives.set_link_up(spec.ns_interface, namespace=ns)
        self.primitives.add_address(
            spec.ns_interface, spec.interior_address, namespace=ns
        )
        self.primitives.add_route(
            "default", device=spec.ns_interface, gateway=spec.gateway_ip, namespace=ns
        )
        result.record(f"address {spec.interior_address} via {spec.gateway_ip}")

    def _ensure_gateway(self, spec: SubnetSpec, result: ReconcileResult) -> None:
        existing = self.primitives.list_addresses(device=spec.vpc_name)
        if spec.gateway_address in existing:
            logger.info(
                f"Gateway {spec.gateway_address} already on {spec.vpc_name}, skipping"
            )
            return
        self.primitives.add_address(spec.vpc_name, spec.gateway_address)
        result.record(f"assign gateway {spec.gateway_address} to {spec.vpc_name}")

    def _vpc_block(self, vpc_name: str, fallback: str) -> str:
        """
        Derive a VPC's address block from its bridge.

        The router address carries the widest prefix of all bridge addresses;
        subnet gateways are narrower.
        """
        interfaces = [
            ipaddress.IPv4Interface(addr)
            for addr in self.primitives.list_addresses(device=vpc_name)
        ]
        if not interfaces:
            logger.warning(
                f"VPC {vpc_name} has no router address, confining subnet to {fallback}"
            )
            return fallback
        widest = min(interfaces, key=lambda iface: iface.network.prefixlen)
        return str(widest.network)

    def _isolate_private_subnet(
        self, spec: SubnetSpec, result: ReconcileResult
    ) -> None:
        subnet_cidr = str(spec.network)
        vpc_block = self._vpc_block(spec.vpc_name, subnet_cidr)
        allow, deny = private_subnet_rules(subnet_cidr, vpc_block, self.external_iface)

        for rule in allow:
            self._ensure_rule(rule, result)

        # Ahead of any VPC-level NAT accept already in the chain
        if not self.primitives.rule_exists(deny):
            self.primitives.insert_rule(deny, position=1)
            result.record(f"insert rule {deny}")

        logger.info(
            f"Subnet {spec.name} configured as PRIVATE (internal to {vpc_block})"
        )

    # =========================================================================
    # Peering
    # =========================================================================

    def peer_vpcs(
        self, vpc_a: str, cidr_a: str, vpc_b: str, cidr_b: str
    ) -> ReconcileResult:
        """
        Link two VPCs with a dedicated veth pair.

        Installs one static route per direction and admits only ICMP and
        established/related traffic between the two CIDRs.
        """
        spec = PeeringSpec(vpc_a, cidr_a, vpc_b, cidr_b)
        result = ReconcileResult(resource=f"{vpc_a}<->{vpc_b}")

        with self._lock():
            if self.oracle.peering_exists(vpc_a, vpc_b):
                logger.info(f"Peering between {vpc_a} and {vpc_b} already exists")
                return result

            for vpc in (vpc_a, vpc_b):
                if not self.oracle.vpc_exists(vpc):
                    raise DependencyMissingError("VPC", vpc)

            logger.info(
                f"Setting up VPC peering between {vpc_a} ({spec.network_a}) "
                f"and {vpc_b} ({spec.network_b})"
            )
            try:
                self.primitives.create_veth(spec.link_a, spec.link_b)
            except PrimitiveError as e:
                raise ResourceCreationError(
                    f"peering link {spec.link_a}/{spec.link_b}", e.detail
                ) from e
            self.primitives.attach_to_bridge(spec.link_a, vpc_a)
            self.primitives.attach_to_bridge(spec.link_b, vpc_b)
            self.primitives.set_link_up(spec.link_a)
            self.primitives.set_link_up(spec.link_b)
            result.record(f"create peering link {spec.link_a} <-> {spec.link_b}")

            self._install_peering_routes(spec, result)
            self._install_peering_rules(spec, result)

            result.created = True
            logger.info(
                f"VPC peering established between {vpc_a} and {vpc_b}. "
                f"ICMP allowed, other new traffic blocked."
            )
            return result

    def _install_peering_routes(
        self, spec: PeeringSpec, result: ReconcileResult
    ) -> None:
        for cidr in (spec.network_b, spec.network_a):
            for _ in range(MAX_DUPLICATES):
                if not self.primitives.delete_route(cidr):
                    break
                result.record(f"remove stale route {cidr}")

        self.primitives.add_route(spec.network_b, device=spec.link_a)
        self.primitives.add_route(spec.network_a, device=spec.link_b)
        result.record(f"route {spec.network_b} dev {spec.link_a}")
        result.record(f"route {spec.network_a} dev {spec.link_b}")

    def _install_peering_rules(
        self, spec: PeeringSpec, result: ReconcileResult
    ) -> None:
        rules = peering_rules(spec.network_a, spec.network_b)

        for rule in rules:
            for _ in range(MAX_DUPLICATES):
                if not self.primitives.delete_rule(rule):
                    break
                result.record(f"purge rule {rule}")

        for rule in rules:
            self.primitives.append_rule(rule)
            result.record(f"add rule {rule}")

    # =========================================================================
    # Teardown
    # =========================================================================

    def clean(self) -> CleanupReport:
        """
        Remove every VPC bridge, namespace and leftover veth, flush NAT and
        FORWARD, restore FORWARD ACCEPT and rp_filter, drop known routes.

        Absent resources are not errors. Other step failures are logged,
        collected in the report and do not stop the remaining steps.
        """
        report = CleanupReport()
        step = partial(self._cleanup_step, report)
        prims = self.primitives

        with self._lock():
            logger.info("Initiating cleanup of VPC environment")

            bridges = self.oracle.list_vpcs()
            for bridge in bridges:
                step(f"bring down {bridge}", prims.set_link_down, bridge)
                if step(f"delete bridge {bridge}", prims.delete_link, bridge):
                    report.bridges.append(bridge)
                    logger.info(f"DELETION: Bridge {bridge} deleted")

            for ns in prims.list_namespaces():
                if step(f"delete namespace {ns}", prims.delete_namespace, ns):
                    report.namespaces.append(ns)
                    logger.info(f"DELETION: Namespace {ns} deleted")

            for link in prims.list_links():
                if not self._is_leftover_link(link.name, bridges):
                    continue
                if step(f"delete link {link.name}", prims.delete_link, link.name):
                    report.links.append(link.name)

            step("flush nat table", prims.flush_chain, None, "nat")
            step("flush FORWARD", prims.flush_chain, "FORWARD")
            step("reset FORWARD policy", prims.set_chain_policy, "FORWARD", "ACCEPT")
            step("restore rp_filter", prims.set_rp_filter, True)

            for route in prims.list_routes():
                if not self._is_known_route(route.dst):
                    continue
                if step(f"delete route {route.dst}", prims.delete_route, route.dst):
                    report.routes.append(route.dst)

            if report.success:
                logger.info("Cleanup complete")
            else:
                logger.warning(f"Cleanup finished with {len(report.errors)} error(s)")
            return report

    def _cleanup_step(self, report: CleanupReport, description: str, fn, *args):
        try:
            return fn(*args)
        except VpcctlError as e:
            logger.warning(f"Cleanup step '{description}' failed: {e}")
            logger.debug(format_traceback(e))
            report.errors.append(f"{description}: {e}")
            return None

    def _is_leftover_link(self, name: str, removed_bridges: list[str]) -> bool:
        """Peering ends, namespace-side ends and ports of removed bridges."""
        if PEERING_MARKER in name or name.startswith("ns-"):
            return True
        return any(
            name.startswith(subnet_link_prefix(bridge)) for bridge in removed_bridges
        )

    def _is_known_route(self, dst: str) -> bool:
        if dst == "default":
            return False
        try:
            net = ipaddress.IPv4Network(dst, strict=False)
        except ValueError:
            return False
        return any(net.subnet_of(known) for known in self.clean_route_cidrs)
