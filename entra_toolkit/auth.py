"""
MSAL sign-in for the Entra Admin Toolkit.

Each tool requests a fixed scope set. Interactive browser sign-in is the
default; device code flow is available for headless shells. The access token
is held only in memory and never written to disk.
"""

import sys
from dataclasses import dataclass, field

import msal
from rich.console import Console
from rich.panel import Panel

from .graph import GraphClient

console = Console()

APP_ADMIN_SCOPES = [
    "https://graph.microsoft.com/Application.ReadWrite.All",
    "https://graph.microsoft.com/Directory.ReadWrite.All",
    "https://graph.microsoft.com/AuditLog.Read.All",
]

RISK_SCOPES = [
    "https://graph.microsoft.com/IdentityRiskEvent.Read.All",
    "https://graph.microsoft.com/IdentityRiskyUser.Read.All",
    "https://graph.microsoft.com/AuditLog.Read.All",
    "https://graph.microsoft.com/Policy.Read.All",
    "https://graph.microsoft.com/User.ReadWrite.All",
]


@dataclass
class GraphSession:
    """Authenticated context handed to every menu handler."""

    client: GraphClient
    tenant_id: str
    account: dict = field(default_factory=dict)

    @property
    def account_name(self) -> str:
        return self.account.get("userPrincipalName") or self.account.get("displayName") or "unknown account"


def _device_code_token(app: msal.PublicClientApplication, scopes: list[str]) -> dict:
    flow = app.initiate_device_flow(scopes=scopes)
    if "user_code" not in flow:
        return {"error_description": f"Failed to create device flow: {flow.get('error_description', 'unknown error')}"}

    console.print(
        Panel(
            f"[bold yellow]Open your browser and go to:[/bold yellow]\n\n"
            f"  [cyan underline]{flow.get('verification_uri', 'https://microsoft.com/devicelogin')}[/cyan underline]\n\n"
            f"[bold yellow]Enter the code:[/bold yellow]\n\n"
            f"  [bold white on blue]  {flow['user_code']}  [/bold white on blue]\n\n"
            f"[dim]Waiting for authentication... (expires in {flow.get('expires_in', 900) // 60} minutes)[/dim]",
            title="[bold cyan]Microsoft Authentication Required[/bold cyan]",
            border_style="cyan",
        )
    )
    return app.acquire_token_by_device_flow(flow)


def acquire_token(tenant_id: str, client_id: str, scopes: list[str], device_code: bool = False) -> str:
    """
    Sign in and return an access token string.

    Exits the process with status 1 if no token can be obtained; nothing else
    in the tools can run without one.
    """
    authority = f"https://login.microsoftonline.com/{tenant_id}"
    app = msal.PublicClientApplication(client_id=client_id, authority=authority)

    if device_code:
        result = _device_code_token(app, scopes)
    else:
        console.print("[cyan]Opening a browser window for Microsoft sign-in...[/cyan]")
        result = app.acquire_token_interactive(scopes=scopes, prompt="select_account")

    if "access_token" not in result:
        error = result.get("error_description") or result.get("error") or "Unknown error"
        console.print(f"[red]Authentication failed: {error}[/red]")
        sys.exit(1)

    console.print("[green]Authentication successful.[/green]")
    return result["access_token"]


def start_session(
    scopes: list[str],
    tenant_id: str,
    client_id: str,
    device_code: bool = False,
) -> GraphSession:
    """Authenticate once and build the session threaded through the menus."""
    token = acquire_token(tenant_id, client_id, scopes, device_code=device_code)
    client = GraphClient(access_token=token)

    try:
        account = client.get_me()
    except (PermissionError, RuntimeError) as exc:
        console.print(f"[yellow]Signed in, but the account profile could not be read ({exc}).[/yellow]")
        account = {}

    return GraphSession(client=client, tenant_id=tenant_id, account=account)
