"""Tests for the topology reconciler against the in-memory adapter."""

import json

import pytest

from vpcctl.config import config
from vpcctl.exceptions import (
    DependencyMissingError,
    PolicyNotFoundWarning,
    PrimitiveError,
    ResourceCreationError,
    VpcctlError,
)
from vpcctl.models.topology import SubnetSpec
from vpcctl.net.base import LinkInfo, RouteInfo
from vpcctl.net.rules import FilterRule
from vpcctl.services.reconciler import TopologyReconciler

from .fakes import ROOT

WEB = SubnetSpec("web_ns", "10.0.1.0/24", "public", "vpc0")


@pytest.fixture
def vpc0(reconciler):
    reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")
    return "vpc0"


@pytest.fixture
def two_vpcs(reconciler):
    reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")
    reconciler.create_vpc("vpc1", "10.10.0.1/16", "10.10.0.0/16")


# =============================================================================
# CreateVPC
# =============================================================================


class TestCreateVPC:
    def test_creates_bridge_with_router_address(self, reconciler, primitives):
        result = reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")

        assert result.created
        bridge = primitives.links[ROOT]["vpc0"]
        assert bridge.kind == "bridge"
        assert bridge.alias == "vpcctl-vpc"
        assert bridge.up
        assert primitives.list_addresses(device="vpc0") == ["10.0.0.1/16"]

    def test_sets_forwarding_baseline(self, reconciler, primitives):
        reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")

        assert primitives.ip_forward is True
        assert primitives.rp_filter is False
        assert primitives.policies[(ROOT, "FORWARD")] == "DROP"

    def test_second_call_is_noop(self, reconciler, primitives):
        reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")
        before = primitives.snapshot()

        result = reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")

        assert not result.created
        assert result.actions == []
        assert primitives.snapshot() == before

    def test_bridge_failure_raises_creation_error(self, reconciler, primitives):
        primitives.failures["create_bridge"] = "Operation not permitted"

        with pytest.raises(ResourceCreationError, match="bridge vpc0"):
            reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")
        assert not primitives.ip_forward

    def test_router_address_needs_mask(self, reconciler):
        with pytest.raises(ValueError, match="prefix length"):
            reconciler.create_vpc("vpc0", "10.0.0.1", "10.0.0.0/16")

    def test_creates_lock_file(self, reconciler, tmp_path):
        reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")
        assert (tmp_path / "vpcctl.lock").exists()

    def test_unusable_lock_file_raises(self, primitives, compiler, tmp_path):
        lock_file = str(tmp_path / "missing" / "vpcctl.lock")
        reconciler = TopologyReconciler(
            primitives, compiler=compiler, lock_file=lock_file
        )

        with pytest.raises(VpcctlError, match="lock file"):
            reconciler.create_vpc("vpc0", "10.0.0.1/16", "10.0.0.0/16")
        assert not primitives.link_exists("vpc0")


# =============================================================================
# EnableNAT
# =============================================================================


class TestEnableNAT:
    def test_requires_vpc(self, reconciler):
        with pytest.raises(DependencyMissingError, match="VPC vpc0"):
            reconciler.enable_nat("vpc0", "10.0.0.0/16")

    def test_installs_masquerade_and_forward_rules(self, reconciler, primitives, vpc0):
        reconciler.enable_nat("vpc0", "10.0.0.0/16")

        assert primitives.chain("POSTROUTING", "nat") == [
            FilterRule(
                chain="POSTROUTING",
                target="MASQUERADE",
                table="nat",
                source="10.0.0.0/16",
                out_iface="eth0",
            )
        ]
        forward = primitives.chain("FORWARD")
        assert len(forward) == 2
        assert forward[0].in_iface == "vpc0" and forward[0].out_iface == "eth0"
        assert forward[1].in_iface == "eth0"
        assert forward[1].ctstate == "ESTABLISHED,RELATED"

    def test_rerun_adds_no_duplicates(self, reconciler, primitives, vpc0):
        reconciler.enable_nat("vpc0", "10.0.0.0/16")
        before = primitives.snapshot()

        result = reconciler.enable_nat("vpc0", "10.0.0.0/16")

        assert not result.changed
        assert primitives.snapshot() == before

    def test_cidr_is_normalized(self, reconciler, primitives, vpc0):
        reconciler.enable_nat("vpc0", "10.0.0.1/16")
        assert primitives.chain("POSTROUTING", "nat")[0].source == "10.0.0.0/16"

    def test_public_traffic_leaves_through_nat(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")
        reconciler.enable_nat("vpc0", "10.0.0.0/16")

        assert (
            primitives.forward_verdict(
                "10.0.1.10", "8.8.8.8", in_iface="vpc0", out_iface="eth0"
            )
            == "ACCEPT"
        )
        assert (
            primitives.forward_verdict(
                "8.8.8.8", "10.0.1.10", in_iface="eth0", out_iface="vpc0"
            )
            == "DROP"
        )
        assert (
            primitives.forward_verdict(
                "8.8.8.8",
                "10.0.1.10",
                in_iface="eth0",
                out_iface="vpc0",
                ctstate="ESTABLISHED",
            )
            == "ACCEPT"
        )


# =============================================================================
# AddSubnet
# =============================================================================


class TestAddSubnet:
    def test_requires_vpc(self, reconciler, primitives):
        with pytest.raises(DependencyMissingError, match="VPC vpc0"):
            reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")
        assert not primitives.namespaces

    def test_builds_namespace(self, reconciler, primitives, vpc0):
        result = reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")

        assert result.created
        assert primitives.namespace_exists("web_ns")
        assert set(primitives.links["web_ns"]) == {"lo", WEB.ns_interface}
        assert primitives.links["web_ns"][WEB.ns_interface].up
        assert primitives.links["web_ns"]["lo"].up
        addresses = primitives.list_addresses(
            device=WEB.ns_interface, namespace="web_ns"
        )
        assert addresses == ["10.0.1.10/24"]
        assert primitives.list_routes(namespace="web_ns") == [
            RouteInfo(dst="default", gateway="10.0.1.1", device=WEB.ns_interface)
        ]

    def test_bridge_side_attached(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")

        port = primitives.links[ROOT][WEB.bridge_interface]
        assert port.master == "vpc0"
        assert port.up
        assert "10.0.1.1/24" in primitives.list_addresses(device="vpc0")

    def test_namespace_is_deny_by_default(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")

        assert primitives.policies[("web_ns", "INPUT")] == "DROP"
        assert primitives.policies[("web_ns", "OUTPUT")] == "DROP"

    def test_applies_security_policy(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")

        inbound = primitives.chain("INPUT", namespace="web_ns")
        outbound = primitives.chain("OUTPUT", namespace="web_ns")
        assert [(r.protocol, r.dport, r.target) for r in inbound] == [
            ("tcp", 80, "ACCEPT"),
            ("tcp", 22, "DROP"),
            ("icmp", None, "ACCEPT"),
        ]
        assert [(r.destination, r.target) for r in outbound] == [
            ("0.0.0.0/0", "ACCEPT")
        ]

    def test_existing_subnet_only_reapplies_policy(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")
        before = primitives.snapshot()

        result = reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")

        assert not result.created
        assert primitives.snapshot() == before

    def test_reapply_replaces_rules(self, reconciler, primitives, policy_file, vpc0):
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")

        policies = json.loads(policy_file.read_text())
        policies[0]["ingress"] = [
            {"port": 443, "protocol": "tcp", "action": "allow"},
        ]
        policy_file.write_text(json.dumps(policies))
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")

        inbound = primitives.chain("INPUT", namespace="web_ns")
        assert [r.dport for r in inbound] == [443]

    def test_shared_gateway_not_duplicated(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")
        reconciler.add_subnet("api_ns", "10.0.1.0/24", "public", "vpc0")

        assert primitives.list_addresses(device="vpc0").count("10.0.1.1/24") == 1

    def test_missing_policy_warns_and_stays_closed(self, reconciler, primitives, vpc0):
        with pytest.warns(PolicyNotFoundWarning, match="cache_ns"):
            reconciler.add_subnet("cache_ns", "10.0.3.0/24", "private", "vpc0")

        assert primitives.chain("INPUT", namespace="cache_ns") == []
        assert primitives.policies[("cache_ns", "INPUT")] == "DROP"

    def test_partial_failure_leaves_completed_steps(self, reconciler, primitives, vpc0):
        primitives.failures["move_to_namespace"] = "Invalid argument"

        with pytest.raises(PrimitiveError):
            reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")

        assert primitives.namespace_exists("web_ns")
        assert WEB.bridge_interface in primitives.links[ROOT]

    def test_veth_failure_raises_creation_error(self, reconciler, primitives, vpc0):
        primitives.failures["create_veth"] = "File exists"

        with pytest.raises(ResourceCreationError, match=WEB.bridge_interface):
            reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")


    def test_subnets_sharing_a_prefix_get_own_links(
        self, reconciler, primitives, vpc0
    ):
        reconciler.add_subnet("web_a", "10.0.1.0/24", "public", "vpc0")
        result = reconciler.add_subnet("web_b", "10.0.2.0/24", "public", "vpc0")

        assert result.created
        web_a = SubnetSpec("web_a", "10.0.1.0/24", "public", "vpc0")
        web_b = SubnetSpec("web_b", "10.0.2.0/24", "public", "vpc0")
        assert set(primitives.links["web_a"]) == {"lo", web_a.ns_interface}
        assert set(primitives.links["web_b"]) == {"lo", web_b.ns_interface}
        assert primitives.links[ROOT][web_a.bridge_interface].master == "vpc0"
        assert primitives.links[ROOT][web_b.bridge_interface].master == "vpc0"


class TestPrivateSubnet:
    def test_confined_to_vpc_block(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("db_ns", "10.0.2.0/24", "private", "vpc0")

        assert (
            primitives.forward_verdict(
                "10.0.2.10", "10.0.1.10", in_iface="vpc0", out_iface="vpc0"
            )
            == "ACCEPT"
        )
        assert (
            primitives.forward_verdict(
                "10.0.1.10", "10.0.2.10", in_iface="vpc0", out_iface="vpc0"
            )
            == "ACCEPT"
        )
        assert (
            primitives.forward_verdict(
                "10.0.2.10", "8.8.8.8", in_iface="vpc0", out_iface="eth0"
            )
            == "DROP"
        )

    def test_vpc_block_comes_from_router_address(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("db_ns", "10.0.2.0/24", "private", "vpc0")

        destinations = {r.destination for r in primitives.chain("FORWARD")}
        assert "10.0.0.0/16" in destinations

    @pytest.mark.parametrize("nat_first", [True, False])
    def test_denied_outbound_even_with_nat(
        self, reconciler, primitives, vpc0, nat_first
    ):
        if nat_first:
            reconciler.enable_nat("vpc0", "10.0.0.0/16")
        reconciler.add_subnet("db_ns", "10.0.2.0/24", "private", "vpc0")
        if not nat_first:
            reconciler.enable_nat("vpc0", "10.0.0.0/16")

        assert (
            primitives.forward_verdict(
                "10.0.2.10", "8.8.8.8", in_iface="vpc0", out_iface="eth0"
            )
            == "DROP"
        )
        # Public subnets in the same VPC keep internet access
        assert (
            primitives.forward_verdict(
                "10.0.1.10", "8.8.8.8", in_iface="vpc0", out_iface="eth0"
            )
            == "ACCEPT"
        )

    def test_rules_not_duplicated(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("db_ns", "10.0.2.0/24", "private", "vpc0")
        reconciler.add_subnet("db_ns", "10.0.2.0/24", "private", "vpc0")

        forward = primitives.chain("FORWARD")
        assert len(forward) == len(set(forward)) == 3


# =============================================================================
# PeerVPCs
# =============================================================================


class TestPeerVPCs:
    def test_requires_both_vpcs(self, reconciler, vpc0):
        with pytest.raises(DependencyMissingError, match="VPC vpc1"):
            reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")

    def test_rejects_self_peering(self, reconciler, vpc0):
        with pytest.raises(ValueError, match="itself"):
            reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc0", "10.0.0.0/16")

    def test_long_vpc_names_rejected(self, reconciler, primitives):
        reconciler.create_vpc("datacenter1", "10.1.0.1/16", "10.1.0.0/16")
        reconciler.create_vpc("datacenter3", "10.3.0.1/16", "10.3.0.0/16")

        with pytest.raises(ValueError, match="shorter VPC names"):
            reconciler.peer_vpcs(
                "datacenter1", "10.1.0.0/16", "datacenter3", "10.3.0.0/16"
            )
        assert not any("-to-" in link.name for link in primitives.list_links())

    def test_creates_peering_link(self, reconciler, primitives, two_vpcs):
        result = reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")

        assert result.created
        assert primitives.links[ROOT]["vpc0-to-vpc1"].master == "vpc0"
        assert primitives.links[ROOT]["vpc1-to-vpc0"].master == "vpc1"
        assert primitives.links[ROOT]["vpc0-to-vpc1"].up
        assert primitives.links[ROOT]["vpc1-to-vpc0"].up

    def test_one_route_per_direction(self, reconciler, primitives, two_vpcs):
        reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")

        assert sorted(
            (r.dst, r.device) for r in primitives.list_routes()
        ) == [
            ("10.0.0.0/16", "vpc1-to-vpc0"),
            ("10.10.0.0/16", "vpc0-to-vpc1"),
        ]

    def test_stale_routes_replaced(self, reconciler, primitives, two_vpcs):
        primitives.links[ROOT]["old0"] = LinkInfo(name="old0")
        primitives.add_route("10.10.0.0/16", device="old0")

        reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")

        routes = [r for r in primitives.list_routes() if r.dst == "10.10.0.0/16"]
        assert routes == [RouteInfo(dst="10.10.0.0/16", device="vpc0-to-vpc1")]

    def test_rule_order(self, reconciler, primitives, two_vpcs):
        reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")

        forward = primitives.chain("FORWARD")
        kinds = [
            ("established" if r.ctstate else r.protocol or "any", r.target)
            for r in forward
        ]
        assert kinds == [
            ("established", "ACCEPT"),
            ("established", "ACCEPT"),
            ("icmp", "ACCEPT"),
            ("icmp", "ACCEPT"),
            ("any", "DROP"),
            ("any", "DROP"),
        ]

    def test_only_icmp_and_established_cross(self, reconciler, primitives, two_vpcs):
        reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")
        verdict = primitives.forward_verdict

        assert verdict("10.0.1.10", "10.10.1.10", protocol="icmp") == "ACCEPT"
        assert verdict("10.10.1.10", "10.0.1.10", protocol="icmp") == "ACCEPT"
        assert verdict("10.0.1.10", "10.10.1.10", protocol="tcp") == "DROP"
        assert verdict("10.10.1.10", "10.0.1.10", protocol="udp") == "DROP"
        assert (
            verdict("10.10.1.10", "10.0.1.10", protocol="tcp", ctstate="ESTABLISHED")
            == "ACCEPT"
        )

    def test_existing_peering_is_noop(self, reconciler, primitives, two_vpcs):
        reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")
        before = primitives.snapshot()

        result = reconciler.peer_vpcs("vpc1", "10.10.0.0/16", "vpc0", "10.0.0.0/16")

        assert not result.created
        assert primitives.snapshot() == before

    def test_repeering_purges_old_rules(self, reconciler, primitives, two_vpcs):
        reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")
        # Link removed out of band, filter rules left behind
        primitives.delete_link("vpc0-to-vpc1")

        reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")

        forward = primitives.chain("FORWARD")
        assert len(forward) == 6
        assert len(set(forward)) == 6
        assert len(primitives.list_routes()) == 2


# =============================================================================
# Clean
# =============================================================================


class TestClean:
    def test_vacuous_clean_succeeds(self, reconciler, primitives):
        report = reconciler.clean()

        assert report.success
        assert report.bridges == report.namespaces == report.links == []
        assert primitives.policies[(ROOT, "FORWARD")] == "ACCEPT"
        assert primitives.rp_filter is True

    def test_removes_full_topology(self, reconciler, primitives, two_vpcs):
        primitives.links[ROOT]["eth0"] = LinkInfo(name="eth0")
        primitives.links[ROOT]["docker0"] = LinkInfo(name="docker0", kind="bridge")
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")
        reconciler.add_subnet("db_ns", "10.0.2.0/24", "private", "vpc0")
        reconciler.add_subnet("api_ns", "10.10.1.0/24", "public", "vpc1")
        reconciler.enable_nat("vpc0", "10.0.0.0/16")
        reconciler.peer_vpcs("vpc0", "10.0.0.0/16", "vpc1", "10.10.0.0/16")

        report = reconciler.clean()

        assert report.success
        assert report.bridges == ["vpc0", "vpc1"]
        assert report.namespaces == ["api_ns", "db_ns", "web_ns"]
        assert set(primitives.links[ROOT]) == {"eth0", "docker0"}
        assert primitives.namespaces == set()
        assert primitives.chain("POSTROUTING", "nat") == []
        assert primitives.chain("FORWARD") == []
        assert primitives.list_routes() == []
        assert primitives.policies[(ROOT, "FORWARD")] == "ACCEPT"
        assert primitives.rp_filter is True

    def test_removes_pattern_bridges_and_orphans(self, reconciler, primitives):
        primitives.create_bridge("vpc7")
        primitives.create_veth("vpc3-to-vpc4", "vpc4-to-vpc3")
        primitives.create_veth("vpc7-app", "tmp-app")

        report = reconciler.clean()

        assert report.bridges == ["vpc7"]
        assert "vpc3-to-vpc4" in report.links
        assert "vpc7-app" in report.links
        assert primitives.list_links() == []

    def test_removes_subnet_links_of_long_named_vpc(self, reconciler, primitives):
        primitives.create_bridge("tenant-east", alias=config.BRIDGE_ALIAS)
        primitives.create_veth("tenant-e-9146e7", "peer-9146e7")

        report = reconciler.clean()

        assert report.bridges == ["tenant-east"]
        assert "tenant-e-9146e7" in report.links
        assert primitives.list_links() == []

    def test_removes_known_routes_only(self, reconciler, primitives):
        primitives.links[ROOT]["eth0"] = LinkInfo(name="eth0")
        primitives.add_route("default", device="eth0", gateway="192.168.1.1")
        primitives.add_route("10.10.0.0/16", device="eth0")
        primitives.add_route("172.16.0.0/12", device="eth0")

        report = reconciler.clean()

        assert report.routes == ["10.10.0.0/16"]
        assert [r.dst for r in primitives.list_routes()] == [
            "default",
            "172.16.0.0/12",
        ]

    def test_is_idempotent(self, reconciler, primitives, vpc0):
        reconciler.add_subnet("web_ns", "10.0.1.0/24", "public", "vpc0")
        reconciler.clean()
        after_first = primitives.snapshot()

        report = reconciler.clean()

        assert report.success
        assert report.bridges == report.namespaces == []
        assert primitives.snapshot() == after_first

    def test_step_errors_collected(self, reconciler, primitives, vpc0):
        primitives.failures["flush_chain"] = "Permission denied"

        report = reconciler.clean()

        assert not report.success
        assert len(report.errors) == 2
        assert report.bridges == ["vpc0"]
        assert primitives.rp_filter is True
        assert primitives.policies[(ROOT, "FORWARD")] == "ACCEPT"
