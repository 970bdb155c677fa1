"""Hydra MCP CLI.

Inspect configured MCP servers and make one-off calls against them.

Usage:
    hydra-mcp types                          # List supported transport types
    hydra-mcp servers                        # List configured servers
    hydra-mcp servers --tag ai --format json # Filter, machine-readable
    hydra-mcp call ollama tools/list         # Start a server, call, print result
    hydra-mcp call git tools/call --params '{"name": "status"}'
    hydra-mcp --config ./servers.yaml servers
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click

from .config import ServerConfigLoader
from .errors import TransportError
from .transport import TransportFactory

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _endpoint(server: Any) -> str:
    if server.type == "stdio":
        return " ".join([server.command, *server.args])
    return server.url


@click.group()
@click.option("--config", "config_path", type=click.Path(), help="Path to the servers config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Hydra MCP - transports for Model Context Protocol servers."""
    # Protocol output goes to stdout; logs go to stderr
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = ServerConfigLoader(config_path)


@main.command("types")
def list_types() -> None:
    """List supported transport types."""
    for transport_type in TransportFactory().get_supported_types():
        click.echo(transport_type)


@main.command("servers")
@click.option("--tag", help="Only servers carrying this tag")
@click.option("--group", help="Only servers in this group")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_obj
def list_servers(
    loader: ServerConfigLoader, tag: str | None, group: str | None, output_format: str
) -> None:
    """List configured MCP servers."""
    try:
        if tag:
            servers = loader.servers_by_tag(tag)
        elif group:
            servers = loader.servers_by_group(group)
        else:
            servers = loader.load().servers
    except TransportError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output_format == FORMAT_JSON:
        data = {name: server.model_dump(mode="json") for name, server in servers.items()}
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return

    if not servers:
        click.echo("No servers found.")
        return

    click.echo(f"{'Name':<20} {'Type':<6} {'Enabled':<8} {'Endpoint':<50}")
    click.echo("-" * 86)
    for name, server in servers.items():
        enabled = "yes" if server.enabled else "no"
        endpoint = truncate(_endpoint(server), 50)
        click.echo(f"{truncate(name, 20):<20} {server.type:<6} {enabled:<8} {endpoint:<50}")

    click.echo(f"\nTotal: {len(servers)} server(s)")


@main.command("call")
@click.argument("server_id")
@click.argument("method")
@click.option("--params", "params_json", default=None, help="Request params as a JSON object")
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds")
@click.pass_obj
def call(
    loader: ServerConfigLoader,
    server_id: str,
    method: str,
    params_json: str | None,
    timeout: float | None,
) -> None:
    """Start SERVER_ID, send one METHOD request and print the result."""
    params: Any = None
    if params_json is not None:
        try:
            params = json.loads(params_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint="--params") from e
        if not isinstance(params, dict | list):
            raise click.BadParameter("must be a JSON object or array", param_hint="--params")

    try:
        server = loader.get_server(server_id)
        result = asyncio.run(_call(server, method, params, timeout))
    except TransportError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(result, indent=2, ensure_ascii=False, default=str))


async def _call(server: Any, method: str, params: Any, timeout: float | None) -> Any:
    transport = TransportFactory().create(server)
    async with transport:
        return await transport.request(method, params, timeout=timeout)


if __name__ == "__main__":
    main()
