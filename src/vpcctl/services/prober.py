"""
Connectivity prober.

Read-only reachability checks run from inside subnet namespaces. ICMP probes
shell out to ``ping`` through ``ip netns exec``; TCP probes run ``nc -z`` the
same way. Each probe gets a small fixed retry budget and reports
its outcome as a ProbeResult; nothing here mutates the topology.
"""

from __future__ import annotations

import ipaddress
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vpcctl.config import config
from vpcctl.exceptions import DependencyMissingError, ProbeFailure, VpcctlError
from vpcctl.services.oracle import ExistenceOracle
from vpcctl.utils.logger import get_logger

if TYPE_CHECKING:
    from vpcctl.net.base import NetworkPrimitives

logger = get_logger(__name__)


@dataclass
class ProbeResult:
    """Outcome of one probe (possibly after several attempts)."""

    source: str
    target: str
    method: str  # "icmp" or "tcp"
    success: bool
    attempts: int
    output: str = ""

    def raise_for_status(self) -> None:
        """Raise ProbeFailure if the probe did not succeed."""
        if not self.success:
            raise ProbeFailure(self.source, self.target, self.attempts)


class ConnectivityProber:
    """Issues ping and TCP probes from subnet namespaces."""

    def __init__(
        self,
        primitives: NetworkPrimitives,
        count: int | None = None,
        timeout: int | None = None,
        retries: int | None = None,
        retry_delay: float = 1.0,
    ):
        self.primitives = primitives
        self.oracle = ExistenceOracle(primitives)
        self.count = count or config.PROBE_COUNT
        self.timeout = timeout or config.PROBE_TIMEOUT
        self.retries = retries if retries is not None else config.PROBE_RETRIES
        self.retry_delay = retry_delay

    def _require_subnet(self, name: str) -> None:
        if not self.oracle.subnet_exists(name):
            raise DependencyMissingError("Subnet", name)

    def _attempts(self):
        """Yield attempt numbers, sleeping between them."""
        total = self.retries + 1
        for attempt in range(1, total + 1):
            yield attempt
            if attempt < total and self.retry_delay:
                time.sleep(self.retry_delay)

    # =========================================================================
    # Probes
    # =========================================================================

    def ping(self, namespace: str, target: str) -> ProbeResult:
        """Ping a target from inside a namespace."""
        self._require_subnet(namespace)
        argv = ["ping", "-c", str(self.count), "-W", str(self.timeout), target]
        # Whole ping run, plus one second of slack
        run_timeout = self.count * self.timeout + 1

        output = ""
        attempt = 0
        for attempt in self._attempts():
            logger.info(
                f"Testing connectivity from {namespace} to {target} "
                f"(attempt {attempt})"
            )
            result = self.primitives.exec_in_namespace(
                namespace, argv, timeout=run_timeout
            )
            output = result.stdout or result.stderr
            if result.ok:
                logger.info(f"Connectivity test succeeded: {namespace} -> {target}")
                return ProbeResult(namespace, target, "icmp", True, attempt, output)

        logger.warning(
            f"Connectivity test failed: {namespace} -> {target} "
            f"after {attempt} attempt(s)"
        )
        return ProbeResult(namespace, target, "icmp", False, attempt, output)

    def test_subnet(self, namespace: str, target: str | None = None) -> ProbeResult:
        """Ping a target from a subnet, defaulting to the subnet's gateway."""
        if target is None:
            self._require_subnet(namespace)
            target = self.default_gateway(namespace)
        return self.ping(namespace, target)

    def test_internet(self, namespace: str) -> ProbeResult:
        return self.ping(namespace, config.INTERNET_PROBE_TARGET)

    def test_subnet_to_subnet(self, source: str, destination: str) -> ProbeResult:
        """Ping the interior address of one subnet from another."""
        self._require_subnet(source)
        self._require_subnet(destination)
        return self.ping(source, self.interior_address(destination))

    def test_tcp(self, namespace: str, host: str, port: int) -> ProbeResult:
        """Open a TCP connection from a namespace."""
        self._require_subnet(namespace)
        target = f"{host}:{port}"

        attempt = 0
        for attempt in self._attempts():
            logger.info(f"Testing TCP from {namespace} to {target} (attempt {attempt})")
            if self.primitives.tcp_connect(namespace, host, port, self.timeout):
                logger.info(f"TCP test succeeded: {namespace} -> {target}")
                return ProbeResult(namespace, target, "tcp", True, attempt)

        logger.warning(
            f"TCP test failed: {namespace} -> {target} after {attempt} attempt(s)"
        )
        return ProbeResult(namespace, target, "tcp", False, attempt)

    # =========================================================================
    # Discovery
    # =========================================================================

    def default_gateway(self, namespace: str) -> str:
        for route in self.primitives.list_routes(namespace=namespace):
            if route.dst == "default" and route.gateway:
                return route.gateway
        raise VpcctlError(f"No default route found in {namespace}")

    def interior_address(self, namespace: str) -> str:
        """First non-loopback IPv4 address inside a namespace."""
        for address in self.primitives.list_addresses(namespace=namespace):
            iface = ipaddress.IPv4Interface(address)
            if not iface.ip.is_loopback:
                return str(iface.ip)
        raise VpcctlError(f"No interior address found in {namespace}")
