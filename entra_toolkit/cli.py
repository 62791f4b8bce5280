"""
Entra Admin Toolkit CLI entrypoints.

Usage:
    entra-risk [OPTIONS]     sign-in risk and Conditional Access posture
    entra-apps [OPTIONS]     application registration management
    python -m entra_toolkit.cli risk|apps [OPTIONS]
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .apps import MAIN_ITEMS
from .auth import APP_ADMIN_SCOPES, RISK_SCOPES, GraphSession, start_session
from .config import DEFAULT_LOG_DIR, DEFAULT_OUTPUT_DIR, resolve_config
from .errorlog import configure_error_log
from .menu import run_menu
from .risk import build_menu

console = Console()


def _common_options(func):
    """Options shared by both tools."""
    options = [
        click.option(
            "--tenant", "-t",
            default=None,
            metavar="TENANT_ID",
            help="Entra tenant ID or domain. Falls back to ENTRA_TENANT_ID, the config file, then 'organizations'.",
        ),
        click.option(
            "--client-id", "-c",
            default=None,
            metavar="CLIENT_ID",
            help="Public client app ID used for sign-in. Defaults to Microsoft Graph Command Line Tools.",
        ),
        click.option(
            "--config",
            default=None,
            type=click.Path(exists=False, path_type=Path),
            metavar="PATH",
            help="Path to entra_toolkit_config.json (default: ./entra_toolkit_config.json).",
        ),
        click.option(
            "--device-code",
            is_flag=True,
            default=False,
            help="Sign in with device code flow instead of opening a browser.",
        ),
        click.option(
            "--log-dir",
            default=DEFAULT_LOG_DIR,
            show_default=True,
            type=click.Path(file_okay=False, path_type=Path),
            metavar="DIR",
            help="Directory for error_log.txt (created on first error).",
        ),
        click.version_option(__version__, "--version", "-V"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _bootstrap(
    title: str,
    scopes: list[str],
    tenant: str | None,
    client_id: str | None,
    config: Path | None,
    device_code: bool,
    log_dir: Path,
) -> GraphSession:
    configure_error_log(log_dir)
    console.print(
        Panel(
            f"[bold]{title}[/bold]  [dim]v{__version__}[/dim]\n"
            f"[dim]Requested permissions: {', '.join(s.rsplit('/', 1)[-1] for s in scopes)}[/dim]",
            border_style="cyan",
        )
    )
    settings = resolve_config(tenant, client_id, config)
    session = start_session(scopes, settings["tenant_id"], settings["client_id"], device_code=device_code)
    console.print(f"[green]Signed in as:[/green] {session.account_name}")
    return session


@click.command()
@_common_options
@click.option(
    "--output", "-o",
    default=DEFAULT_OUTPUT_DIR,
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    metavar="DIR",
    help="Directory for generated HTML and CSV reports.",
)
def risk_main(
    tenant: str | None,
    client_id: str | None,
    config: Path | None,
    device_code: bool,
    log_dir: Path,
    output: Path,
) -> None:
    """
    Sign-in risk and Conditional Access posture analyzer.

    Reads risky users, risk detections and sign-in logs from Identity
    Protection and shows how enforced Conditional Access policies respond to
    each risk level.
    """
    session = _bootstrap("Entra Sign-in Risk Analyzer", RISK_SCOPES, tenant, client_id, config, device_code, log_dir)
    run_menu(
        "Sign-in Risk Analyzer",
        build_menu(output),
        session,
        header=lambda: console.print(f"[dim]Signed in as {session.account_name}[/dim]\n"),
    )
    console.print("[cyan]Goodbye.[/cyan]")
    sys.exit(0)


@click.command()
@_common_options
def apps_main(
    tenant: str | None,
    client_id: str | None,
    config: Path | None,
    device_code: bool,
    log_dir: Path,
) -> None:
    """
    Application registration manager.

    Search, create, update and delete app registrations; manage redirect URIs
    and client secrets; review permissions and sign-in logs.
    """
    session = _bootstrap("Entra App Registration Manager", APP_ADMIN_SCOPES, tenant, client_id, config, device_code, log_dir)
    run_menu(
        "App Registration Manager",
        MAIN_ITEMS,
        session,
        header=lambda: console.print(f"[dim]Signed in as {session.account_name}[/dim]\n"),
    )
    console.print("[cyan]Goodbye.[/cyan]")
    sys.exit(0)


@click.group()
def main() -> None:
    """Entra Admin Toolkit."""


main.add_command(risk_main, name="risk")
main.add_command(apps_main, name="apps")


if __name__ == "__main__":
    main()
