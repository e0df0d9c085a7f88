"""VPC peering commands."""

from typing import Annotated

import typer

from vpcctl.cli import context
from vpcctl.cli.output import console, print_actions, print_error, print_success
from vpcctl.exceptions import VpcctlError

app = typer.Typer(help="Peer VPCs")


@app.command("vpcs")
def peer_vpcs(
    vpc_a: Annotated[str, typer.Argument(help="First VPC name")],
    cidr_a: Annotated[str, typer.Argument(help="First VPC address block")],
    vpc_b: Annotated[str, typer.Argument(help="Second VPC name")],
    cidr_b: Annotated[str, typer.Argument(help="Second VPC address block")],
):
    """
    Link two VPCs.

    Only ICMP and established/related traffic is admitted between them.
    """
    context.require_root()

    try:
        result = context.build_reconciler().peer_vpcs(vpc_a, cidr_a, vpc_b, cidr_b)
    except (VpcctlError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if result.created:
        print_success(f"Peering established between {vpc_a} and {vpc_b}")
        print_actions(result.actions)
    else:
        console.print(
            f"[dim]Peering between {vpc_a} and {vpc_b} already exists, "
            "nothing to do.[/dim]"
        )
