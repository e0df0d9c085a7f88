"""
vpcctl configuration.

A global config instance that the CLI callback updates from command-line
options (and their ``VPCCTL_*`` environment fallbacks) before any command runs.

Usage:
    from vpcctl.config import config

    config.EXTERNAL_IFACE = "enp1s0"
    config.POLICY_FILE = "/etc/vpcctl/policies.json"
"""

from dataclasses import dataclass, field

from vpcctl.models.enums import LogLevel


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class VpcctlConfig:
    """
    vpcctl configuration.

    Attributes:
        POLICY_FILE: Path to the JSON security policy document.
        EXTERNAL_IFACE: Host interface facing the internet.
        LOCK_FILE: Lock file serializing mutating operations ("" disables it).
        LOG_LEVEL: Console logging verbosity.
    """

    # -------------------------------------------------------------------------
    # Host Network Configuration
    # -------------------------------------------------------------------------

    EXTERNAL_IFACE: str = "eth0"

    # -------------------------------------------------------------------------
    # Topology Defaults
    # -------------------------------------------------------------------------

    VPC_NAME_DEFAULT: str = "vpc0"
    VPC_ROUTER_IP_DEFAULT: str = "10.0.0.1/16"
    VPC_CIDR_DEFAULT: str = "10.0.0.0/16"

    # Bridges created by vpcctl carry this alias; clean also removes bridges
    # whose name matches the pattern (topologies built by older tooling)
    BRIDGE_ALIAS: str = "vpcctl-vpc"
    VPC_BRIDGE_PATTERN: str = r"^vpc\d+$"

    # Address ranges whose leftover routes are removed by clean
    CLEAN_ROUTE_CIDRS: list[str] = field(
        default_factory=lambda: ["10.0.0.0/16", "10.10.0.0/16"]
    )

    # -------------------------------------------------------------------------
    # Policy Configuration
    # -------------------------------------------------------------------------

    POLICY_FILE: str = "vpc_security_policies.json"

    # -------------------------------------------------------------------------
    # Probe Configuration
    # -------------------------------------------------------------------------

    PROBE_COUNT: int = 3
    PROBE_TIMEOUT: int = 2  # seconds per echo / connect attempt
    PROBE_RETRIES: int = 2
    INTERNET_PROBE_TARGET: str = "8.8.8.8"

    # -------------------------------------------------------------------------
    # Execution Configuration
    # -------------------------------------------------------------------------

    LOCK_FILE: str = "/run/vpcctl.lock"
    REQUIRE_ROOT: bool = True

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.INFO
    LOG_FILE: str = "vpcctl.log"

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def get_lock_file(self) -> str | None:
        """Get the lock file path, or None when locking is disabled."""
        return self.LOCK_FILE or None

    def get_log_file(self) -> str | None:
        """Get the activity log path, or None when file logging is disabled."""
        return self.LOG_FILE or None


# =============================================================================
# Global Instance
# =============================================================================

config = VpcctlConfig()
