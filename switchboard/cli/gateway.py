"""
CLI commands for calling providers through the gateway.

Provides commands for invoking operations, running connection
diagnostics and listing configured integrations.
"""

import asyncio
import json
import sys
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from switchboard.cli.main import CLIContext, pass_context
from switchboard.config.settings import SwitchboardConfig
from switchboard.exceptions import GatewayError, SwitchboardError
from switchboard.gateway.client import GatewayClient
from switchboard.providers.registry import build_provider

STATUS_STYLES = {
    "ok": "green",
    "warn": "yellow",
    "fail": "red",
    "healthy": "bold green",
    "degraded": "bold yellow",
    "critical": "bold red",
}


def parse_params(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    """
    Parse ``key=value`` pairs.

    Values are decoded as JSON when possible (``limit=20`` gives an int,
    ``hostids=[1,2]`` a list) and kept as strings otherwise.
    """
    params: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got '{pair}'", param_hint="--param")
        try:
            params[key] = json.loads(raw)
        except ValueError:
            params[key] = raw
    return params


async def _invoke(
    config: SwitchboardConfig,
    provider_id: str,
    operation: str,
    params: Dict[str, Any],
    timeout: Optional[float],
) -> Any:
    async with GatewayClient.from_config(config) as gateway:
        return await gateway.invoke(provider_id, operation, params, timeout=timeout)


async def _diagnose(config: SwitchboardConfig, provider_id: str) -> Dict[str, Any]:
    async with GatewayClient.from_config(config) as gateway:
        return await gateway.run_diagnostics(provider_id)


def _fail(cli_ctx: CLIContext, error: Exception) -> None:
    click.echo(f"Error: {error}", err=True)
    if cli_ctx.verbose and isinstance(error, GatewayError):
        click.echo(json.dumps(error.to_dict(), indent=2, default=str), err=True)
    sys.exit(1)


@click.command('invoke')
@click.argument('provider_id')
@click.argument('operation')
@click.option(
    '--param',
    '-p',
    'params',
    multiple=True,
    help='Operation parameter as key=value (can be specified multiple times)',
)
@click.option(
    '--timeout',
    '-t',
    type=float,
    default=None,
    help='Deadline for the whole call in seconds (default: from configuration)',
)
@pass_context
def invoke(cli_ctx: CLIContext, provider_id: str, operation: str, params: Tuple[str, ...], timeout: Optional[float]):
    """
    Invoke an operation on a provider and print the result as JSON.

    Examples:

        switchboard invoke bacula-main listJobs -p limit=20

        switchboard --config ./gateway.yaml invoke zabbix-prod listProblems --timeout 30
    """
    parsed = parse_params(params)
    try:
        result = asyncio.run(_invoke(cli_ctx.config, provider_id, operation, parsed, timeout))
    except SwitchboardError as e:
        _fail(cli_ctx, e)
        return

    click.echo(json.dumps(result, indent=2, default=str))


@click.command('diagnose')
@click.argument('provider_id')
@click.option(
    '--json',
    'as_json',
    is_flag=True,
    help='Print the raw report as JSON',
)
@pass_context
def diagnose(cli_ctx: CLIContext, provider_id: str, as_json: bool):
    """
    Test the connection to a provider.

    Checks the credential, reachability, authentication and every critical
    operation. Exits with status 1 when the result is critical.

    Examples:

        switchboard diagnose unifi-office

        switchboard diagnose wazuh --json
    """
    try:
        report = asyncio.run(_diagnose(cli_ctx.config, provider_id))
    except SwitchboardError as e:
        _fail(cli_ctx, e)
        return

    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
    else:
        console = Console()
        table = Table(title=f"Diagnostics: {provider_id}", show_header=True, header_style="bold cyan")
        table.add_column("Step", style="cyan")
        table.add_column("Status")
        table.add_column("Detail")
        table.add_column("Time (ms)", justify="right", style="dim")

        for step in report["steps"]:
            style = STATUS_STYLES.get(step["status"], "")
            table.add_row(
                step["name"],
                f"[{style}]{step['status'].upper()}[/]",
                step["detail"],
                f"{step['duration_ms']:.0f}",
            )

        console.print(table)
        overall = report["overall_status"]
        console.print(f"Overall: [{STATUS_STYLES.get(overall, '')}]{overall.upper()}[/]")
        if report["recommendations"]:
            console.print()
            console.print("[bold]Recommendations:[/]")
            for recommendation in report["recommendations"]:
                console.print(f"  • {recommendation}")

    if report["overall_status"] == "critical":
        sys.exit(1)


@click.command('providers')
@pass_context
def providers(cli_ctx: CLIContext):
    """
    List configured integrations and their operations.

    Critical operations (exercised by diagnose) are marked with *.
    """
    integrations = cli_ctx.config.integrations
    if not integrations:
        click.echo("No integrations configured")
        return

    console = Console()
    table = Table(title="Integrations", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Base URL")
    table.add_column("Active")
    table.add_column("Operations")

    for integration in integrations:
        try:
            provider = build_provider(integration.type, cli_ctx.config.gateway)
        except SwitchboardError as e:
            operations = f"[red]{e}[/]"
        else:
            operations = ", ".join(
                f"{name}*" if op.critical else name
                for name, op in sorted(provider.operations.items())
            )
        table.add_row(
            integration.provider_id,
            integration.type,
            integration.base_url,
            "yes" if integration.active else "[red]no[/]",
            operations,
        )

    console.print(table)
