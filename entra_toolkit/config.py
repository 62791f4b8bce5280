"""
Configuration resolution for the Entra Admin Toolkit.

Tenant and client IDs come from CLI flags, then environment variables, then
entra_toolkit_config.json, then built-in defaults. Nothing here is secret:
sign-in always uses a public client and an interactive flow.
"""

import json
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

console = Console()

DEFAULT_CONFIG_FILE = Path("entra_toolkit_config.json")

# Microsoft Graph Command Line Tools; pre-consented in most tenants
DEFAULT_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67e"
DEFAULT_TENANT_ID = "organizations"

ENV_TENANT_ID = "ENTRA_TENANT_ID"
ENV_CLIENT_ID = "ENTRA_CLIENT_ID"

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_OUTPUT_DIR = Path("output")


def load_config(config_path: Path | None = None) -> dict:
    """
    Load tenant_id / client_id from a JSON config file.

    A missing file is not an error (defaults apply); a malformed one is
    reported and terminates the process.
    """
    path = config_path or DEFAULT_CONFIG_FILE
    if not path.exists():
        if config_path is not None:
            console.print(
                Panel(
                    f"[bold red]Config file not found:[/bold red] {path}\n\n"
                    "Create it with [cyan]tenant_id[/cyan] and [cyan]client_id[/cyan] keys,\n"
                    "or pass [cyan]--tenant[/cyan] and [cyan]--client-id[/cyan] flags directly.",
                    title="[red]Configuration Error[/red]",
                    border_style="red",
                )
            )
            sys.exit(1)
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except (json.JSONDecodeError, OSError) as exc:
        console.print(f"[red]Error reading config file {path}: {exc}[/red]")
        sys.exit(1)
    if not isinstance(data, dict):
        console.print(f"[red]Config file {path} must contain a JSON object.[/red]")
        sys.exit(1)
    return data


def resolve_config(
    tenant_id: str | None,
    client_id: str | None,
    config_path: Path | None = None,
) -> dict:
    """Merge flags, environment and config file into {"tenant_id", "client_id"}."""
    file_config = load_config(config_path)
    return {
        "tenant_id": (
            tenant_id
            or os.environ.get(ENV_TENANT_ID)
            or file_config.get("tenant_id")
            or DEFAULT_TENANT_ID
        ),
        "client_id": (
            client_id
            or os.environ.get(ENV_CLIENT_ID)
            or file_config.get("client_id")
            or DEFAULT_CLIENT_ID
        ),
    }
