"""VPC creation commands."""

from typing import Annotated

import typer

from vpcctl.cli import context
from vpcctl.cli.output import console, print_actions, print_error, print_success
from vpcctl.config import config
from vpcctl.exceptions import VpcctlError

app = typer.Typer(help="Create resources")


@app.command("vpc")
def create_vpc(
    name: Annotated[
        str | None, typer.Argument(help="VPC name (bridge device name)")
    ] = None,
    router_address: Annotated[
        str | None, typer.Argument(help="Router address with mask, e.g. 10.0.0.1/16")
    ] = None,
    cidr: Annotated[
        str | None, typer.Argument(help="VPC address block, e.g. 10.0.0.0/16")
    ] = None,
):
    """Create a VPC bridge with its router address."""
    context.require_root()

    name = name or config.VPC_NAME_DEFAULT
    router_address = router_address or config.VPC_ROUTER_IP_DEFAULT
    cidr = cidr or config.VPC_CIDR_DEFAULT

    try:
        result = context.build_reconciler().create_vpc(name, router_address, cidr)
    except (VpcctlError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if result.created:
        print_success(f"VPC {name} created ({router_address}, {cidr})")
        print_actions(result.actions)
    else:
        console.print(f"[dim]VPC {name} already exists, nothing to do.[/dim]")
