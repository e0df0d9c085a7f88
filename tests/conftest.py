"""Shared fixtures: in-memory adapter, policy document, engine objects."""

import json

import pytest

from vpcctl.config import config
from vpcctl.services.policy import PolicyCompiler
from vpcctl.services.prober import ConnectivityProber
from vpcctl.services.reconciler import TopologyReconciler

from .fakes import FakePrimitives

POLICIES = [
    {
        "name": "web_ns",
        "ingress": [
            {"port": 80, "protocol": "tcp", "source": "0.0.0.0/0", "action": "allow"},
            {"port": 22, "protocol": "tcp", "action": "deny"},
            {"port": "all", "protocol": "icmp", "action": "allow"},
        ],
        "egress": [
            {"port": "all", "protocol": "all", "action": "allow"},
        ],
    },
    {
        "name": "db_ns",
        "ingress": [
            {"port": 5432, "protocol": "tcp", "source": "10.0.1.0/24", "action": "allow"},
        ],
        "egress": [],
    },
]


@pytest.fixture(autouse=True)
def restore_config():
    """Undo config changes made by a test (the CLI callback mutates it)."""
    saved = dict(vars(config))
    yield
    vars(config).clear()
    vars(config).update(saved)


@pytest.fixture
def primitives():
    return FakePrimitives()


@pytest.fixture
def policy_file(tmp_path):
    path = tmp_path / "vpc_security_policies.json"
    path.write_text(json.dumps(POLICIES))
    return path


@pytest.fixture
def compiler(primitives, policy_file):
    return PolicyCompiler(primitives, policy_file)


@pytest.fixture
def reconciler(primitives, compiler, tmp_path):
    return TopologyReconciler(
        primitives,
        compiler=compiler,
        external_iface="eth0",
        bridge_alias="vpcctl-vpc",
        clean_route_cidrs=["10.0.0.0/16", "10.10.0.0/16"],
        lock_file=str(tmp_path / "vpcctl.lock"),
    )


@pytest.fixture
def prober(primitives):
    return ConnectivityProber(primitives, count=1, timeout=1, retries=2, retry_delay=0)
