"""CLI entry point for the webhook hub."""

import json
import logging
import sys

import click

from webhook_hub.config import get_config
from webhook_hub.core.decomposer import TaskDecomposer
from webhook_hub.providers.github import compute_signature


@click.group()
def main():
    """hub - Webhook Hub CLI"""
    pass


# ── Server Command ───────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default=None, help="Host to bind to (default: HUB_HOST or 127.0.0.1)")
@click.option("--port", default=None, type=int, help="Port to listen on (default: HUB_PORT or 3002)")
def serve(host, port):
    """Start the webhook HTTP server."""
    from webhook_hub.web.app import run_server

    config = get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = host or config.host
    port = port or config.port
    click.echo(f"Webhook hub listening on http://{host}:{port}")
    if config.skip_webhook_verification:
        click.echo("  Warning: webhook signature verification is disabled", err=True)
    run_server(host=host, port=port, config=config)


# ── Planning Commands ────────────────────────────────────────────────────────


@main.command("decompose")
@click.argument("requirements")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def decompose(requirements, json_output):
    """Show how REQUIREMENTS would be split into components."""
    decomposition = TaskDecomposer().decompose(requirements)

    if json_output:
        click.echo(json.dumps(decomposition.to_dict(), indent=2))
        return

    priority_icons = {"high": "●", "medium": "◐", "low": "○"}

    click.echo(f"Strategy: {decomposition.strategy}")
    click.echo(f"Estimated sessions: {decomposition.estimated_sessions}")
    for component in decomposition.components:
        icon = priority_icons.get(component.priority, "?")
        deps = f" [depends: {', '.join(component.dependencies)}]" if component.dependencies else ""
        click.echo(f"  {icon} {component.name} ({component.priority}){deps}")
        click.echo(f"      {component.requirements}")


@main.command("sign")
@click.argument("secret")
@click.argument("payload_file", type=click.File("rb"), default="-")
def sign(secret, payload_file):
    """Print the X-Hub-Signature-256 value for a payload (stdin by default)."""
    body = payload_file.read()
    if not body:
        click.echo("Error: empty payload", err=True)
        sys.exit(1)
    click.echo(compute_signature(secret, body))


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from webhook_hub.mcp.server import mcp

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
