"""
Shared wiring for CLI commands.

Builds the engine objects from the global config. Tests replace
``get_primitives`` to run commands against an in-memory adapter.
"""

import os
import warnings
from contextlib import contextmanager

import typer

from vpcctl.cli.output import print_error, print_warning
from vpcctl.config import config
from vpcctl.exceptions import PolicyNotFoundWarning
from vpcctl.net import get_host_primitives
from vpcctl.services.policy import PolicyCompiler
from vpcctl.services.prober import ConnectivityProber
from vpcctl.services.reconciler import TopologyReconciler


def get_primitives():
    """Get the primitive adapter commands run against."""
    return get_host_primitives()


def build_compiler() -> PolicyCompiler:
    return PolicyCompiler(get_primitives(), config.POLICY_FILE)


def build_reconciler() -> TopologyReconciler:
    primitives = get_primitives()
    return TopologyReconciler(
        primitives,
        compiler=PolicyCompiler(primitives, config.POLICY_FILE),
        external_iface=config.EXTERNAL_IFACE,
        bridge_alias=config.BRIDGE_ALIAS,
        clean_route_cidrs=config.CLEAN_ROUTE_CIDRS,
        lock_file=config.get_lock_file(),
    )


def build_prober() -> ConnectivityProber:
    return ConnectivityProber(
        get_primitives(),
        count=config.PROBE_COUNT,
        timeout=config.PROBE_TIMEOUT,
        retries=config.PROBE_RETRIES,
    )


def require_root() -> None:
    """Exit unless running as root (when root is required)."""
    if config.REQUIRE_ROOT and os.geteuid() != 0:
        print_error("This command must be run as root.")
        raise typer.Exit(1)


@contextmanager
def policy_warnings():
    """Show missing-policy warnings on the console instead of as Python warnings."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", PolicyNotFoundWarning)
        yield
    for warning in caught:
        if issubclass(warning.category, PolicyNotFoundWarning):
            print_warning(str(warning.message))
        else:
            warnings.showwarning(
                warning.message,
                warning.category,
                warning.filename,
                warning.lineno,
            )
