"""
vpcctl CLI entry point.

Usage:
    vpcctl [OPTIONS] COMMAND [ARGS]...

Commands:
    create vpc        Create a VPC
    add subnet        Add a subnet to a VPC
    enable nat        Give a VPC internet access
    peer vpcs         Peer two VPCs
    test ...          Connectivity tests
    policy show       Show a subnet's compiled security policy
    status            Show live topology
    clean             Remove everything vpcctl created
"""

from typing import Annotated

import typer
from rich.table import Table

from vpcctl.cli import context
from vpcctl.cli.commands import add, create, enable, peer, policy, probe
from vpcctl.cli.output import console, print_error, print_success, print_warning
from vpcctl.config import config
from vpcctl.exceptions import VpcctlError
from vpcctl.models.enums import LogLevel
from vpcctl.services.oracle import ExistenceOracle
from vpcctl.utils.logger import configure_logging

app = typer.Typer(
    name="vpcctl",
    help="Emulated VPC networking on a single Linux host",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register command groups
app.add_typer(create.app, name="create", help="Create a VPC")
app.add_typer(add.app, name="add", help="Add a subnet")
app.add_typer(enable.app, name="enable", help="Enable NAT")
app.add_typer(peer.app, name="peer", help="Peer VPCs")
app.add_typer(probe.app, name="test", help="Connectivity tests")
app.add_typer(policy.app, name="policy", help="Security policy inspection")


@app.callback()
def main(
    policy_file: Annotated[
        str | None,
        typer.Option(
            "--policy-file",
            "-p",
            help="Security policy JSON",
            envvar="VPCCTL_POLICY_FILE",
        ),
    ] = None,
    external_iface: Annotated[
        str | None,
        typer.Option(
            "--external-iface",
            "-e",
            help="Internet-facing interface",
            envvar="VPCCTL_EXTERNAL_IFACE",
        ),
    ] = None,
    lock_file: Annotated[
        str | None,
        typer.Option(
            "--lock-file",
            help="Lock file serializing changes (empty to disable)",
            envvar="VPCCTL_LOCK_FILE",
        ),
    ] = None,
    log_level: Annotated[
        LogLevel,
        typer.Option(
            "--log-level", "-l", help="Console log level", envvar="VPCCTL_LOG_LEVEL"
        ),
    ] = LogLevel.INFO,
    log_file: Annotated[
        str | None,
        typer.Option(
            "--log-file",
            help="Activity log (empty to disable)",
            envvar="VPCCTL_LOG_FILE",
        ),
    ] = None,
    require_root: Annotated[
        bool,
        typer.Option(
            "--require-root/--no-require-root",
            help="Refuse to change the network as non-root",
            envvar="VPCCTL_REQUIRE_ROOT",
        ),
    ] = True,
):
    """
    vpcctl - emulated VPC networking.

    Build VPCs from bridges and namespaces, add NAT and peering, and apply
    per-subnet security policy.
    """
    if policy_file is not None:
        config.POLICY_FILE = policy_file
    if external_iface is not None:
        config.EXTERNAL_IFACE = external_iface
    if lock_file is not None:
        config.LOCK_FILE = lock_file
    if log_file is not None:
        config.LOG_FILE = log_file
    config.LOG_LEVEL = log_level
    config.REQUIRE_ROOT = require_root

    configure_logging(config.LOG_LEVEL, config.get_log_file())


@app.command("clean")
def clean():
    """Remove all VPCs, subnets, peerings and NAT rules."""
    context.require_root()

    try:
        report = context.build_reconciler().clean()
    except VpcctlError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(
        f"Removed {len(report.bridges)} bridge(s), "
        f"{len(report.namespaces)} namespace(s), "
        f"{len(report.links)} link(s), {len(report.routes)} route(s)."
    )
    if not report.success:
        for error in report.errors:
            print_warning(error)
        print_error("Cleanup finished with errors.")
        raise typer.Exit(1)

    print_success("Cleanup complete.")


@app.command("status")
def status():
    """Show VPCs, subnets and peerings discovered from live state."""
    primitives = context.get_primitives()
    oracle = ExistenceOracle(primitives)

    try:
        vpcs = oracle.list_vpcs()
        subnets = oracle.list_subnets()
        peerings = oracle.list_peerings()

        table = Table(title="vpcctl topology")
        table.add_column("Kind", style="cyan")
        table.add_column("Name", style="bold")
        table.add_column("Addresses")

        for vpc in vpcs:
            addresses = primitives.list_addresses(device=vpc)
            table.add_row("vpc", vpc, ", ".join(addresses) or "-")
        for ns in subnets:
            addresses = [
                a for a in primitives.list_addresses(namespace=ns)
                if not a.startswith("127.")
            ]
            table.add_row("subnet", ns, ", ".join(addresses) or "-")
        for left, right in peerings:
            table.add_row("peering", f"{left} <-> {right}", "-")

        toggles = primitives.get_toggles()
    except VpcctlError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not (vpcs or subnets or peerings):
        console.print("[dim]No VPC resources found.[/dim]")
    else:
        console.print(table)

    console.print(
        f"[dim]ip_forward={toggles.ip_forward} rp_filter={toggles.rp_filter}[/dim]"
    )


@app.command("version")
def version():
    """Show version information."""
    from vpcctl import __version__

    console.print(f"vpcctl v{__version__}")


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
