"""Connectivity test commands."""

from typing import Annotated

import typer

from vpcctl.cli import context
from vpcctl.cli.output import console, print_error, print_success
from vpcctl.exceptions import ProbeFailure, VpcctlError
from vpcctl.services.prober import ProbeResult

app = typer.Typer(help="Connectivity tests")


def _report(result: ProbeResult) -> None:
    """Print probe output and exit non-zero on failure."""
    if result.output:
        console.print(result.output.rstrip(), markup=False, highlight=False)
    try:
        result.raise_for_status()
    except ProbeFailure as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"{result.source} reached {result.target} ({result.method})")


@app.command("subnet")
def test_subnet(
    namespace: Annotated[str, typer.Argument(help="Subnet to probe from")],
    target: Annotated[
        str | None,
        typer.Argument(help="Address to ping (default: the subnet's gateway)"),
    ] = None,
):
    """Ping from a subnet to a target address."""
    context.require_root()
    try:
        result = context.build_prober().test_subnet(namespace, target)
    except VpcctlError as e:
        print_error(str(e))
        raise typer.Exit(1)
    _report(result)


@app.command("internet")
def test_internet(
    namespace: Annotated[str, typer.Argument(help="Subnet to probe from")],
):
    """Ping a public address from a subnet."""
    context.require_root()
    try:
        result = context.build_prober().test_internet(namespace)
    except VpcctlError as e:
        print_error(str(e))
        raise typer.Exit(1)
    _report(result)


@app.command("subnet_to_subnet")
def test_subnet_to_subnet(
    source: Annotated[str, typer.Argument(help="Subnet to probe from")],
    destination: Annotated[str, typer.Argument(help="Subnet to probe")],
):
    """Ping one subnet's interior address from another subnet."""
    context.require_root()
    try:
        result = context.build_prober().test_subnet_to_subnet(source, destination)
    except VpcctlError as e:
        print_error(str(e))
        raise typer.Exit(1)
    _report(result)


@app.command("tcp")
def test_tcp(
    namespace: Annotated[str, typer.Argument(help="Subnet to connect from")],
    host: Annotated[str, typer.Argument(help="Destination address")],
    port: Annotated[int, typer.Argument(help="Destination TCP port")],
):
    """Open a TCP connection from a subnet."""
    context.require_root()
    try:
        result = context.build_prober().test_tcp(namespace, host, port)
    except VpcctlError as e:
        print_error(str(e))
        raise typer.Exit(1)
    _report(result)
