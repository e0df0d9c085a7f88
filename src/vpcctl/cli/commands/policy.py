"""Security policy commands."""

from typing import Annotated

import typer
from rich.table import Table

from vpcctl.cli import context
from vpcctl.cli.output import console, print_error
from vpcctl.exceptions import VpcctlError

app = typer.Typer(help="Security policy inspection")


@app.command("show")
def show_policy(
    subnet: Annotated[str, typer.Argument(help="Subnet name")],
):
    """Show the compiled filter rules for a subnet without applying them."""
    try:
        with context.policy_warnings():
            compiled = context.build_compiler().compile(subnet)
    except VpcctlError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not compiled.found:
        console.print(f"[dim]{subnet} stays deny-by-default.[/dim]")
        return

    table = Table(title=f"Security policy: {subnet}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Chain", style="cyan")
    table.add_column("Rule")

    for index, rule in enumerate(compiled.directives, start=1):
        table.add_row(str(index), rule.chain, " ".join(rule.match_args()))

    console.print(table)
