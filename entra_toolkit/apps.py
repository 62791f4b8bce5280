"""
Application registration management handlers for entra-apps.

Every handler takes the GraphSession (or, inside the per-application
sub-menu, an AppContext wrapping it) and returns an Outcome. Graph failures
are caught here, printed, written to the error log and returned as FAILED.
"""

from __future__ import annotations

from dataclasses import dataclass

import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .auth import GraphSession
from .errorlog import log_error
from .menu import MenuItem, Outcome, Status, ask, confirm, run_menu
from .reporter import format_timestamp
from .validation import (
    AUDIENCE_LABELS,
    SIGN_IN_AUDIENCES,
    credential_status,
    filter_and_sort_apps,
    is_valid_display_name,
    is_valid_redirect_uri,
    parse_audience_choice,
    parse_selection,
)

console = Console()

GRAPH_ERRORS = (PermissionError, RuntimeError, requests.RequestException)

DELETE_CONFIRMATION = "DELETE"
INITIAL_SECRET_NAME = "Initial secret"
MAX_SECRET_MONTHS = 24
SIGN_IN_LOG_LIMIT = 20


@dataclass
class AppContext:
    """The session plus the last-fetched snapshot of the selected application."""

    session: GraphSession
    app: dict

    @property
    def client(self):
        return self.session.client

    @property
    def name(self) -> str:
        return self.app.get("displayName") or "(unnamed)"


def _failure(action: str, exc: Exception) -> Outcome:
    log_error(action, exc)
    console.print(f"[red]{action}: {exc}[/red]")
    return Outcome.failed(f"{action}.")


def _show_secret(credential: dict) -> None:
    console.print(
        Panel(
            f"[bold]Description:[/bold] {credential.get('displayName', '')}\n"
            f"[bold]Key ID:[/bold]      {credential.get('keyId', '')}\n"
            f"[bold]Expires:[/bold]     {format_timestamp(credential.get('endDateTime'))}\n\n"
            f"[bold]Secret value:[/bold]\n  [bold white on blue] {credential.get('secretText', '')} [/bold white on blue]\n\n"
            "[bold red]Copy this value now. It cannot be retrieved again.[/bold red]",
            title="[bold yellow]Client Secret Created[/bold yellow]",
            border_style="yellow",
        )
    )


# ── Search and selection ─────────────────────────────────────────────────────


def choose_application(session: GraphSession) -> dict | None:
    """
    Fetch all registrations, filter by a search term and return the chosen one.

    Returns None when nothing is selected: fetch failure, no match, or an
    invalid selection.
    """
    try:
        with console.status("[cyan]Fetching application registrations..."):
            apps = session.client.list_applications()
    except GRAPH_ERRORS as exc:
        _failure("Failed to list application registrations", exc)
        return None

    if not apps:
        console.print("[yellow]No application registrations found in this tenant.[/yellow]")
        return None

    term = ask("Search by display name (Enter to list all):")
    matches = filter_and_sort_apps(apps, term)
    if not matches:
        console.print(f"[yellow]No applications match '{term}'.[/yellow]")
        return None

    table = Table(title=f"Application Registrations ({len(matches)})", header_style="bold")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Display Name", style="bold")
    table.add_column("Client ID", style="dim")
    table.add_column("Audience")
    for number, app in enumerate(matches, 1):
        table.add_row(
            str(number),
            app.get("displayName") or "(unnamed)",
            app.get("appId", ""),
            app.get("signInAudience", ""),
        )
    console.print(table)

    index = parse_selection(ask("Select an application number:"), len(matches))
    if index is None:
        console.print("[red]Invalid selection.[/red]")
        return None
    return matches[index]


def search_and_manage(session: GraphSession) -> Outcome:
    app = choose_application(session)
    if app is None:
        return Outcome.cancelled("No application selected.")
    manage_application(session, app)
    return Outcome.ok()


# ── Creation ─────────────────────────────────────────────────────────────────


def _prompt_display_name() -> str:
    while True:
        name = ask("Display name:")
        if is_valid_display_name(name):
            return name
        console.print("[red]Display name must be at least 3 characters.[/red]")


def _prompt_audience() -> str:
    for key, audience in SIGN_IN_AUDIENCES.items():
        console.print(f"  [cyan]{key}.[/cyan] {AUDIENCE_LABELS[audience]} [dim]({audience})[/dim]")
    while True:
        audience = parse_audience_choice(ask("Supported account types (1-3):"))
        if audience:
            return audience
        console.print("[red]Choose 1, 2 or 3.[/red]")


def _prompt_redirect_uri() -> str | None:
    uri = ask("Web redirect URI (Enter to skip):")
    if not uri:
        return None
    if not is_valid_redirect_uri(uri):
        console.print("[yellow]Redirect URI must start with http:// or https://. Skipping web configuration.[/yellow]")
        return None
    return uri


def create_application(session: GraphSession) -> Outcome:
    """Collect name, audience and an optional redirect URI, then register the app."""
    console.print("[bold cyan]New application registration[/bold cyan]\n")
    name = _prompt_display_name()
    audience = _prompt_audience()
    redirect_uri = _prompt_redirect_uri()

    try:
        with console.status("[cyan]Creating application registration..."):
            app = session.client.create_application(name, audience, redirect_uri)
    except GRAPH_ERRORS as exc:
        return _failure("Failed to create application registration", exc)

    console.print(
        Panel(
            f"[bold]Display name:[/bold] {app.get('displayName', name)}\n"
            f"[bold]Client ID:[/bold]    {app.get('appId', '')}\n"
            f"[bold]Object ID:[/bold]    {app.get('id', '')}\n"
            f"[bold]Audience:[/bold]     {app.get('signInAudience', audience)}"
            + (f"\n[bold]Redirect URI:[/bold] {redirect_uri}" if redirect_uri else ""),
            title="[bold green]Application Created[/bold green]",
            border_style="green",
        )
    )

    if confirm("Create an initial client secret valid for one year?"):
        try:
            credential = session.client.add_password(app["id"], INITIAL_SECRET_NAME, months=12)
        except GRAPH_ERRORS as exc:
            return _failure("Application created, but the initial secret could not be created", exc)
        _show_secret(credential)

    return Outcome.ok(f"Application '{name}' registered.")


# ── Per-application sub-menu ─────────────────────────────────────────────────


def view_details(ctx: AppContext) -> Outcome:
    app = ctx.app
    redirect_uris = (app.get("web") or {}).get("redirectUris") or []
    audience = app.get("signInAudience", "")
    permission_count = sum(len(r.get("resourceAccess") or []) for r in app.get("requiredResourceAccess") or [])
    lines = [
        f"[bold]Display name:[/bold]  {ctx.name}",
        f"[bold]Client ID:[/bold]     {app.get('appId', '')}",
        f"[bold]Object ID:[/bold]     {app.get('id', '')}",
        f"[bold]Audience:[/bold]      {AUDIENCE_LABELS.get(audience, audience)}",
        f"[bold]Created:[/bold]       {format_timestamp(app.get('createdDateTime'))}",
        f"[bold]Secrets:[/bold]       {len(app.get('passwordCredentials') or [])}",
        f"[bold]Permissions:[/bold]   {permission_count}",
        f"[bold]App roles:[/bold]     {len(app.get('appRoles') or [])}",
        "[bold]Redirect URIs:[/bold]",
    ]
    lines += [f"  • {uri}" for uri in redirect_uris] or ["  [dim]none[/dim]"]
    if app.get("notes"):
        lines.append(f"[bold]Notes:[/bold] {app['notes']}")
    console.print(Panel("\n".join(lines), title=f"[bold cyan]{ctx.name}[/bold cyan]", border_style="cyan"))
    return Outcome.ok()


def _refresh(ctx: AppContext) -> None:
    try:
        ctx.app = ctx.client.get_application(ctx.app["id"])
    except GRAPH_ERRORS as exc:
        log_error("Failed to refresh application snapshot", exc)


def update_display_name(ctx: AppContext) -> Outcome:
    new_name = ask(f"New display name for '{ctx.name}' (Enter to keep):")
    if not new_name:
        return Outcome.cancelled("Display name unchanged.")
    if not is_valid_display_name(new_name):
        return Outcome.failed("Display name must be at least 3 characters.")
    try:
        ctx.client.update_application(ctx.app["id"], {"displayName": new_name})
    except GRAPH_ERRORS as exc:
        return _failure("Failed to update application", exc)
    ctx.app["displayName"] = new_name
    _refresh(ctx)
    return Outcome.ok(f"Display name changed to '{new_name}'.")


def _permission_names(service_principal: dict | None) -> dict[str, str]:
    if not service_principal:
        return {}
    names = {role["id"]: role.get("value") or role.get("displayName", "") for role in service_principal.get("appRoles") or []}
    for scope in service_principal.get("oauth2PermissionScopes") or []:
        names[scope["id"]] = scope.get("value") or scope.get("adminConsentDisplayName", "")
    return names


def list_permissions(ctx: AppContext) -> Outcome:
    required = ctx.app.get("requiredResourceAccess") or []
    if not required:
        return Outcome.ok("No API permissions are configured for this application.")

    table = Table(title=f"API Permissions: {ctx.name}", header_style="bold")
    table.add_column("Resource", style="bold")
    table.add_column("Permission")
    table.add_column("Type")

    for resource in required:
        resource_app_id = resource.get("resourceAppId", "")
        try:
            service_principal = ctx.client.get_service_principal_by_app_id(resource_app_id)
        except GRAPH_ERRORS as exc:
            log_error(f"Failed to resolve permissions for resource {resource_app_id}", exc)
            service_principal = None
        names = _permission_names(service_principal)
        resource_name = (service_principal or {}).get("displayName") or resource_app_id
        for access in resource.get("resourceAccess") or []:
            kind = "Application" if access.get("type") == "Role" else "Delegated"
            table.add_row(resource_name, names.get(access.get("id"), access.get("id", "")), kind)

    console.print(table)
    return Outcome.ok()


def add_redirect_uri(ctx: AppContext) -> Outcome:
    uri = ask("Redirect URI to add (Enter to cancel):")
    if not uri:
        return Outcome.cancelled("No redirect URI added.")
    if not is_valid_redirect_uri(uri):
        return Outcome.failed("Redirect URI must start with http:// or https://.")

    web = ctx.app.get("web") or {}
    existing = list(web.get("redirectUris") or [])
    if uri in existing:
        return Outcome.cancelled(f"{uri} is already registered.")

    try:
        ctx.client.update_application(ctx.app["id"], {"web": {"redirectUris": existing + [uri]}})
    except GRAPH_ERRORS as exc:
        return _failure("Failed to add redirect URI", exc)
    ctx.app["web"] = {**web, "redirectUris": existing + [uri]}
    return Outcome.ok(f"Redirect URI {uri} added.")


def create_secret(ctx: AppContext) -> Outcome:
    description = ask("Secret description (Enter for 'Client secret'):") or "Client secret"
    months_text = ask(f"Validity in months, 1-{MAX_SECRET_MONTHS} (Enter for 12):") or "12"
    try:
        months = int(months_text)
    except ValueError:
        return Outcome.failed(f"'{months_text}' is not a number of months.")
    if not 1 <= months <= MAX_SECRET_MONTHS:
        return Outcome.failed(f"Validity must be between 1 and {MAX_SECRET_MONTHS} months.")

    try:
        credential = ctx.client.add_password(ctx.app["id"], description, months=months)
    except GRAPH_ERRORS as exc:
        return _failure("Failed to create client secret", exc)
    _show_secret(credential)
    _refresh(ctx)
    return Outcome.ok("Client secret created.")


def list_secrets(ctx: AppContext) -> Outcome:
    try:
        ctx.app = ctx.client.get_application(ctx.app["id"])
    except GRAPH_ERRORS as exc:
        return _failure("Failed to fetch client secrets", exc)

    credentials = ctx.app.get("passwordCredentials") or []
    if not credentials:
        return Outcome.ok("This application has no client secrets.")

    table = Table(title=f"Client Secrets: {ctx.name}", header_style="bold")
    table.add_column("Description", style="bold")
    table.add_column("Key ID", style="dim")
    table.add_column("Created")
    table.add_column("Expires")
    table.add_column("Status")
    for credential in sorted(credentials, key=lambda c: c.get("endDateTime") or ""):
        status = credential_status(credential)
        style = "red" if status == "Expired" else "green"
        table.add_row(
            credential.get("displayName") or "(no description)",
            credential.get("keyId", ""),
            format_timestamp(credential.get("startDateTime")),
            format_timestamp(credential.get("endDateTime")),
            f"[{style}]{status}[/{style}]",
        )
    console.print(table)
    return Outcome.ok()


def view_sign_in_logs(ctx: AppContext) -> Outcome:
    app_id = ctx.app.get("appId", "")
    try:
        with console.status("[cyan]Fetching sign-in logs..."):
            sign_ins = ctx.client.list_app_sign_ins(app_id, top=SIGN_IN_LOG_LIMIT)
    except GRAPH_ERRORS as exc:
        return _failure("Failed to fetch sign-in logs", exc)

    if not sign_ins:
        return Outcome.ok("No sign-ins recorded for this application.")

    table = Table(title=f"Recent Sign-ins: {ctx.name}", header_style="bold")
    table.add_column("Time")
    table.add_column("User", style="bold")
    table.add_column("Status")
    table.add_column("IP Address", style="dim")
    table.add_column("Risk")
    for sign_in in sign_ins:
        error_code = (sign_in.get("status") or {}).get("errorCode", 0)
        status = "[green]Success[/green]" if error_code == 0 else f"[red]Failure ({error_code})[/red]"
        table.add_row(
            format_timestamp(sign_in.get("createdDateTime"), with_time=True),
            sign_in.get("userPrincipalName", ""),
            status,
            sign_in.get("ipAddress", ""),
            sign_in.get("riskLevelDuringSignIn", "none"),
        )
    console.print(table)
    return Outcome.ok()


def delete_application(ctx: AppContext) -> Outcome:
    console.print(
        Panel(
            f"[bold red]This permanently deletes[/bold red] [bold]{ctx.name}[/bold]\n"
            f"Client ID: {ctx.app.get('appId', '')}\n\n"
            "Applications that authenticate with it will stop working.",
            title="[red]Delete Application[/red]",
            border_style="red",
        )
    )
    if ask(f"Type {DELETE_CONFIRMATION} to confirm:") != DELETE_CONFIRMATION:
        return Outcome.cancelled("Deletion cancelled.")
    try:
        ctx.client.delete_application(ctx.app["id"])
    except GRAPH_ERRORS as exc:
        return _failure("Failed to delete application", exc)
    return Outcome(Status.SUCCESS, f"Application '{ctx.name}' deleted.", close_menu=True)


MANAGE_ITEMS = [
    MenuItem("1", "View details", view_details),
    MenuItem("2", "Update display name", update_display_name),
    MenuItem("3", "List API permissions", list_permissions),
    MenuItem("4", "Add redirect URI", add_redirect_uri),
    MenuItem("5", "Create client secret", create_secret),
    MenuItem("6", "List client secrets", list_secrets),
    MenuItem("7", "View sign-in logs", view_sign_in_logs),
    MenuItem("8", "Delete application", delete_application),
]


def manage_application(session: GraphSession, app: dict) -> None:
    ctx = AppContext(session=session, app=app)
    run_menu(
        "Manage Application",
        MANAGE_ITEMS,
        ctx,
        exit_label="Back to main menu",
        header=lambda: console.print(f"[bold]{ctx.name}[/bold] [dim]({ctx.app.get('appId', '')})[/dim]\n"),
    )


# ── Placeholders ─────────────────────────────────────────────────────────────


def manage_permissions(session: GraphSession) -> Outcome:
    if choose_application(session) is None:
        return Outcome.cancelled("No application selected.")
    ask("Permission to add or remove (e.g. User.Read):")
    return Outcome.not_supported("API permission management")


def configure_authentication(session: GraphSession) -> Outcome:
    if choose_application(session) is None:
        return Outcome.cancelled("No application selected.")
    ask("Platform to configure (web, spa, mobile):")
    return Outcome.not_supported("Authentication configuration")


def review_usage(session: GraphSession) -> Outcome:
    if choose_application(session) is None:
        return Outcome.cancelled("No application selected.")
    return Outcome.not_supported("Application usage review")


def manage_app_roles(session: GraphSession) -> Outcome:
    if choose_application(session) is None:
        return Outcome.cancelled("No application selected.")
    ask("App role name:")
    return Outcome.not_supported("App role management")


MAIN_ITEMS = [
    MenuItem("1", "Search and manage applications", search_and_manage),
    MenuItem("2", "Create application registration", create_application),
    MenuItem("3", "Manage API permissions", manage_permissions),
    MenuItem("4", "Configure authentication", configure_authentication),
    MenuItem("5", "Review application usage", review_usage),
    MenuItem("6", "Manage app roles", manage_app_roles),
]
