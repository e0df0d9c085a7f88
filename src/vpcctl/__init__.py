"""vpcctl - single-host emulated VPC networking."""

__version__ = "0.1.0"
