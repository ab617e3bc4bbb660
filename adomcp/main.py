#!/usr/bin/env python3
"""
adomcp - Azure DevOps MCP server.

This is the main entry point for adomcp. By default it serves the Azure
DevOps repository and feature-switch tools over stdio to an MCP client.
"""

import argparse
import logging
import os
import sys

from . import __version__
from .ado_api import ado_api
from .config import Config, config

logger = logging.getLogger(__name__)


def setup_argument_parser() -> argparse.ArgumentParser:
    """Set up command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="adomcp",
        description="adomcp - Azure DevOps MCP server for repositories and feature switches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s contoso                 # Serve over stdio for organization 'contoso'
  %(prog)s --log-level DEBUG       # Enable debug logging
  %(prog)s --config-test           # Check configuration and connectivity
  %(prog)s --setup                 # Create a .env file interactively

Environment Variables:
  AZURE_DEVOPS_ORG       - Azure DevOps organization name (required)
  AZURE_DEVOPS_PAT       - Personal access token (required unless AZURE_DEVOPS_TOKEN is set)
  AZURE_DEVOPS_TOKEN     - Pre-acquired bearer token
  AZURE_DEVOPS_BASE_URL  - Service root (default: https://dev.azure.com)
  API_TIMEOUT            - Request timeout in seconds (default: 30)
  LOG_LEVEL              - Logging level (default: INFO)
  LOG_FILE               - Also write logs to this file
  FEATURE_SWITCH_ROOT    - Folder of feature-switch files (default: Features/Configuration/Features)
  FEATURE_REPOSITORY_ID  - Repository id suggested by prompts
        """,
    )

    parser.add_argument("--version", action="version", version=f"adomcp v{__version__}")

    parser.add_argument("organization", nargs="?", help="Azure DevOps organization name")
    parser.add_argument("pat", nargs="?", help="Azure DevOps personal access token")

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level,
        help="Set logging level (default: %(default)s)",
    )

    parser.add_argument("--config-test", action="store_true", help="Test configuration and exit")

    parser.add_argument(
        "--setup", action="store_true", help="Create or complete the .env file interactively and exit"
    )

    return parser


def test_configuration() -> bool:
    """Test configuration and connectivity."""
    from rich.console import Console
    from rich.table import Table

    # stdout is reserved for the MCP protocol
    console = Console(stderr=True)

    console.print("[bold cyan]Testing Configuration...[/bold cyan]")

    table = Table(title="Configuration Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Value", style="yellow")

    has_credentials = bool(config.personal_access_token or config.bearer_token)
    table.add_row(
        "Organization",
        "✓ Set" if config.organization else "✗ Missing",
        config.organization or "Not set",
    )
    table.add_row(
        "Credentials",
        "✓ Set" if has_credentials else "✗ Missing",
        ("PAT" if config.personal_access_token else "Bearer token") if has_credentials else "Not set",
    )
    table.add_row("Organization URL", "✓ Set", config.organization_url)
    table.add_row("API Version", "✓ Set", config.api_version)
    table.add_row("Feature Switch Root", "✓ Set", config.feature_switch_root)
    table.add_row(
        "Feature Repository",
        "✓ Set" if config.feature_repository_id else "- Optional",
        config.feature_repository_id or "Not set",
    )
    table.add_row("Log Level", "✓ Set", config.log_level)

    console.print(table)

    if not (config.organization and has_credentials):
        console.print("[red]❌ Configuration incomplete. Please check your environment variables.[/red]")
        return False

    console.print("\n[bold cyan]Testing Azure DevOps Connection...[/bold cyan]")
    try:
        url = f"{config.organization_url}/_apis/connectionData"
        response = ado_api.make_request("GET", url, api_version="")
        user = response.json().get("authenticatedUser", {})
        console.print("[green]✓ Azure DevOps connection successful[/green]")
        console.print(
            f"[green]✓ Authenticated as: {user.get('providerDisplayName', user.get('id', 'Unknown'))}[/green]"
        )
    except Exception as e:
        console.print(f"[red]❌ Azure DevOps connection failed: {str(e)}[/red]")
        return False

    console.print("\n[bold green]🎉 All tests passed! Configuration is working correctly.[/bold green]")
    return True


def main():
    """Main entry point for the application."""
    parser = setup_argument_parser()
    args = parser.parse_args()

    if args.organization:
        os.environ["AZURE_DEVOPS_ORG"] = args.organization
    if args.pat:
        os.environ["AZURE_DEVOPS_PAT"] = args.pat

    os.environ["LOG_LEVEL"] = args.log_level
    config.setup_logging()

    try:
        if args.setup:
            Config(interactive=True)
            sys.exit(0)

        if args.config_test:
            success = test_configuration()
            sys.exit(0 if success else 1)

        config.validate()
        logger.info(f"Starting adomcp for organization: {config.organization}")

        from .server import mcp

        mcp.run()

    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
        sys.exit(0)
    except ValueError as e:
        logger.error(f"Configuration error: {str(e)}")
        sys.exit(1)
    finally:
        ado_api.close()
        logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
