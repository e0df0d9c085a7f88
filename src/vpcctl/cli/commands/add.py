"""Subnet commands."""

from typing import Annotated

import typer

from vpcctl.cli import context
from vpcctl.cli.output import console, print_actions, print_error, print_success
from vpcctl.exceptions import VpcctlError
from vpcctl.models.enums import Visibility

app = typer.Typer(help="Add resources to a VPC")


@app.command("subnet")
def add_subnet(
    name: Annotated[str, typer.Argument(help="Subnet (namespace) name, e.g. web_ns")],
    cidr: Annotated[str, typer.Argument(help="Subnet CIDR, e.g. 10.0.1.0/24")],
    visibility: Annotated[Visibility, typer.Argument(help="public or private")],
    vpc_name: Annotated[str, typer.Argument(help="Owning VPC name")],
):
    """
    Add a subnet namespace to a VPC.

    Re-running for an existing subnet re-applies its security policy.
    """
    context.require_root()

    try:
        with context.policy_warnings():
            result = context.build_reconciler().add_subnet(
                name, cidr, visibility, vpc_name
            )
    except (VpcctlError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if result.created:
        print_success(
            f"Subnet {name} ({cidr}) added to {vpc_name} as {visibility.value}"
        )
        print_actions(result.actions)
    else:
        console.print(
            f"[dim]Subnet {name} already exists, security policy reapplied.[/dim]"
        )
