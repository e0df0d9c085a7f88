"""NAT commands."""

from typing import Annotated

import typer

from vpcctl.cli import context
from vpcctl.cli.output import console, print_actions, print_error, print_success
from vpcctl.config import config
from vpcctl.exceptions import VpcctlError

app = typer.Typer(help="Enable VPC features")


@app.command("nat")
def enable_nat(
    vpc_name: Annotated[str | None, typer.Argument(help="VPC name")] = None,
    cidr: Annotated[str | None, typer.Argument(help="VPC address block")] = None,
):
    """Give a VPC outbound internet access through masquerade."""
    context.require_root()

    vpc_name = vpc_name or config.VPC_NAME_DEFAULT
    cidr = cidr or config.VPC_CIDR_DEFAULT

    try:
        result = context.build_reconciler().enable_nat(vpc_name, cidr)
    except (VpcctlError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if result.changed:
        print_success(f"NAT enabled for {vpc_name} via {config.EXTERNAL_IFACE}")
        print_actions(result.actions)
    else:
        console.print(f"[dim]NAT for {vpc_name} already enabled, nothing to do.[/dim]")
