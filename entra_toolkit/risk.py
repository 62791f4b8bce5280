"""
Sign-in risk and Conditional Access posture handlers for entra-risk.

Handlers only read and display what Identity Protection and Conditional Access
already decided. The one write, disabling an account, is manual: it is offered
only for users still at high risk and needs a typed confirmation.
"""

from __future__ import annotations

from pathlib import Path

import requests
from rich.console import Console
from rich.table import Table

from .auth import GraphSession
from .errorlog import log_error
from .menu import MenuItem, Outcome, ask
from .reporter import format_timestamp, generate_all
from .risk_analyzer import (
    RISK_LEVELS,
    analyze_risk_posture,
    is_remediation_candidate,
    risk_level_counts,
    risky_sign_ins,
    sign_ins_since_filter,
)
from .validation import parse_selection

console = Console()

GRAPH_ERRORS = (PermissionError, RuntimeError, requests.RequestException)

DEFAULT_LOOKBACK_DAYS = 7
MAX_LOOKBACK_DAYS = 30  # sign-in log retention for Entra ID P1/P2
SIGN_IN_FETCH_LIMIT = 500
DETECTION_LIMIT = 50
DISABLE_CONFIRMATION = "DISABLE"

RISK_STYLES = {"high": "bold red", "medium": "yellow", "low": "green", "none": "dim"}


def _failure(action: str, exc: Exception) -> Outcome:
    log_error(action, exc)
    console.print(f"[red]{action}: {exc}[/red]")
    return Outcome.failed(f"{action}.")


def _styled_level(level: str | None) -> str:
    level = (level or "none").lower()
    style = RISK_STYLES.get(level, "")
    return f"[{style}]{level}[/{style}]" if style else level


def _counts_line(counts: dict[str, int]) -> str:
    return " · ".join(f"{_styled_level(level)}: {counts.get(level, 0)}" for level in RISK_LEVELS)


def _ask_lookback_days() -> int | None:
    text = ask(f"Look back how many days? 1-{MAX_LOOKBACK_DAYS} (Enter for {DEFAULT_LOOKBACK_DAYS}):")
    if not text:
        return DEFAULT_LOOKBACK_DAYS
    try:
        days = int(text)
    except ValueError:
        return None
    return days if 1 <= days <= MAX_LOOKBACK_DAYS else None


def _sign_in_table(title: str, sign_ins: list[dict]) -> Table:
    table = Table(title=title, header_style="bold")
    table.add_column("Time")
    table.add_column("User", style="bold")
    table.add_column("Application")
    table.add_column("Status")
    table.add_column("Risk")
    table.add_column("IP Address", style="dim")
    table.add_column("Location", style="dim")
    for sign_in in sign_ins:
        status = sign_in.get("status") or {}
        error_code = status.get("errorCode", 0)
        location = sign_in.get("location") or {}
        table.add_row(
            format_timestamp(sign_in.get("createdDateTime"), with_time=True),
            sign_in.get("userPrincipalName", ""),
            sign_in.get("appDisplayName", ""),
            "[green]Success[/green]" if error_code == 0 else f"[red]{error_code}: {status.get('failureReason', '')}[/red]",
            _styled_level(sign_in.get("riskLevelDuringSignIn")),
            sign_in.get("ipAddress", ""),
            ", ".join(part for part in (location.get("city"), location.get("countryOrRegion")) if part),
        )
    return table


# ── Handlers ─────────────────────────────────────────────────────────────────


def show_risky_users(session: GraphSession) -> Outcome:
    try:
        with console.status("[cyan]Fetching risky users..."):
            users = session.client.list_risky_users()
    except GRAPH_ERRORS as exc:
        return _failure("Failed to fetch risky users", exc)

    at_risk = [u for u in users if u.get("riskState") == "atRisk"]
    if not at_risk:
        return Outcome.ok(f"No users are currently at risk ({len(users)} flagged historically).")

    table = Table(title=f"Users at Risk ({len(at_risk)} of {len(users)} flagged)", header_style="bold")
    table.add_column("User", style="bold")
    table.add_column("Risk Level")
    table.add_column("Detail")
    table.add_column("Last Updated")
    for user in sorted(at_risk, key=lambda u: RISK_LEVELS.index(u["riskLevel"]) if u.get("riskLevel") in RISK_LEVELS else 99):
        table.add_row(
            user.get("userPrincipalName") or user.get("userDisplayName", ""),
            _styled_level(user.get("riskLevel")),
            user.get("riskDetail", ""),
            format_timestamp(user.get("riskLastUpdatedDateTime")),
        )
    console.print(table)
    console.print(f"Risk levels: {_counts_line(risk_level_counts(at_risk))}")
    return Outcome.ok()


def show_risk_detections(session: GraphSession) -> Outcome:
    try:
        with console.status("[cyan]Fetching risk detections..."):
            detections = session.client.list_risk_detections(top=DETECTION_LIMIT)
    except GRAPH_ERRORS as exc:
        return _failure("Failed to fetch risk detections", exc)

    if not detections:
        return Outcome.ok("No risk detections returned.")

    table = Table(title=f"Recent Risk Detections ({len(detections)})", header_style="bold")
    table.add_column("Detected")
    table.add_column("User", style="bold")
    table.add_column("Type")
    table.add_column("Level")
    table.add_column("State")
    table.add_column("IP Address", style="dim")
    for detection in detections:
        table.add_row(
            format_timestamp(detection.get("detectedDateTime"), with_time=True),
            detection.get("userPrincipalName", ""),
            detection.get("riskEventType", ""),
            _styled_level(detection.get("riskLevel")),
            detection.get("riskState", ""),
            detection.get("ipAddress", ""),
        )
    console.print(table)
    console.print(f"Risk levels: {_counts_line(risk_level_counts(detections))}")
    return Outcome.ok()


def show_risky_sign_ins(session: GraphSession) -> Outcome:
    days = _ask_lookback_days()
    if days is None:
        return Outcome.failed(f"Enter a number of days between 1 and {MAX_LOOKBACK_DAYS}.")
    try:
        with console.status("[cyan]Fetching sign-in logs..."):
            sign_ins = session.client.list_sign_ins(sign_ins_since_filter(days), top=SIGN_IN_FETCH_LIMIT)
    except GRAPH_ERRORS as exc:
        return _failure("Failed to fetch sign-in logs", exc)

    risky = risky_sign_ins(sign_ins)
    if not risky:
        return Outcome.ok(f"No risky sign-ins in the last {days} day(s) ({len(sign_ins)} sign-ins checked).")
    console.print(_sign_in_table(f"Risky Sign-ins, last {days} day(s)", risky))
    console.print(f"Risk levels: {_counts_line(risk_level_counts(risky, key='riskLevelDuringSignIn'))}")
    return Outcome.ok()


def show_failed_sign_ins(session: GraphSession) -> Outcome:
    days = _ask_lookback_days()
    if days is None:
        return Outcome.failed(f"Enter a number of days between 1 and {MAX_LOOKBACK_DAYS}.")
    filter_expr = f"{sign_ins_since_filter(days)} and status/errorCode ne 0"
    try:
        with console.status("[cyan]Fetching failed sign-ins..."):
            failures = session.client.list_sign_ins(filter_expr, top=SIGN_IN_FETCH_LIMIT)
    except GRAPH_ERRORS as exc:
        return _failure("Failed to fetch sign-in logs", exc)

    if not failures:
        return Outcome.ok(f"No failed sign-ins in the last {days} day(s).")
    console.print(_sign_in_table(f"Failed Sign-ins, last {days} day(s)", failures))
    return Outcome.ok()


def show_ca_posture(session: GraphSession) -> Outcome:
    try:
        with console.status("[cyan]Fetching Conditional Access policies and risky users..."):
            policies = session.client.get_conditional_access_policies()
            risky_users = session.client.list_risky_users()
    except GRAPH_ERRORS as exc:
        return _failure("Failed to fetch Conditional Access posture", exc)

    posture = analyze_risk_posture(policies, risky_users, [])

    table = Table(title=f"Conditional Access Policies ({len(posture.policies)})", header_style="bold")
    table.add_column("Policy", style="bold")
    table.add_column("State")
    table.add_column("Sign-in Risk")
    table.add_column("User Risk")
    table.add_column("Grant Controls", style="dim")
    table.add_column("All Users")
    state_styles = {"enabled": "green", "disabled": "dim", "enabledForReportingButNotEnforced": "yellow"}
    for policy in posture.policies:
        style = state_styles.get(policy.state, "")
        table.add_row(
            policy.display_name,
            f"[{style}]{policy.state_label}[/{style}]" if style else policy.state_label,
            ", ".join(policy.sign_in_risk_levels) or "—",
            ", ".join(policy.user_risk_levels) or "—",
            ", ".join(policy.grant_controls) or "—",
            "Yes" if policy.includes_all_users else "[yellow]No[/yellow]",
        )
    console.print(table)

    coverage = Table(title="Risk Coverage by Enforced Policies", header_style="bold")
    coverage.add_column("Risk Level")
    coverage.add_column("Sign-in Risk")
    coverage.add_column("User Risk")
    for level in RISK_LEVELS:
        coverage.add_row(
            _styled_level(level),
            ", ".join(posture.sign_in_risk_coverage[level]) or "[bold red]Not covered[/bold red]",
            ", ".join(posture.user_risk_coverage[level]) or "[bold red]Not covered[/bold red]",
        )
    console.print(coverage)
    console.print(f"Users at risk: {posture.at_risk_user_count} ({_counts_line(posture.risky_user_counts)})")

    gaps = len(posture.uncovered_sign_in_levels) + len(posture.uncovered_user_levels)
    if gaps:
        return Outcome.ok(f"{gaps} risk level(s) have no enforced Conditional Access response.")
    return Outcome.ok("Every sign-in and user risk level is covered by an enforced policy.")


def generate_report(session: GraphSession, output_dir: Path) -> Outcome:
    try:
        with console.status("[cyan]Collecting risk data for the report..."):
            tenant = session.client.get_organization()
            policies = session.client.get_conditional_access_policies()
            risky_users = session.client.list_risky_users()
            detections = session.client.list_risk_detections(top=DETECTION_LIMIT)
    except GRAPH_ERRORS as exc:
        return _failure("Failed to collect report data", exc)

    posture = analyze_risk_posture(policies, risky_users, detections)
    tenant_name = tenant.get("displayName") or session.tenant_id
    try:
        outputs = generate_all(posture, risky_users, detections, tenant_name, output_dir)
    except OSError as exc:
        return _failure("Failed to write report", exc)
    return Outcome.ok(f"Report written to {outputs['html']}")


def disable_risky_user(session: GraphSession) -> Outcome:
    """
    Disable one high-risk account after explicit confirmation.

    Never runs automatically: the operator picks the user and types DISABLE.
    """
    try:
        with console.status("[cyan]Fetching risky users..."):
            users = session.client.list_risky_users()
    except GRAPH_ERRORS as exc:
        return _failure("Failed to fetch risky users", exc)

    candidates = sorted(
        (u for u in users if is_remediation_candidate(u)),
        key=lambda u: (u.get("userPrincipalName") or "").lower(),
    )
    if not candidates:
        return Outcome.ok("No users are at high risk; nothing to remediate.")

    table = Table(title="High-risk Users", header_style="bold")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("User", style="bold")
    table.add_column("Detail")
    table.add_column("Last Updated")
    for number, user in enumerate(candidates, 1):
        table.add_row(
            str(number),
            user.get("userPrincipalName") or user.get("userDisplayName", ""),
            user.get("riskDetail", ""),
            format_timestamp(user.get("riskLastUpdatedDateTime")),
        )
    console.print(table)

    index = parse_selection(ask("Select a user to disable:"), len(candidates))
    if index is None:
        return Outcome.cancelled("Invalid selection.")
    user = candidates[index]
    name = user.get("userPrincipalName") or user.get("id", "")

    if ask(f"Type {DISABLE_CONFIRMATION} to block sign-in for {name}:") != DISABLE_CONFIRMATION:
        return Outcome.cancelled("Account left enabled.")
    try:
        session.client.disable_user(user["id"])
    except GRAPH_ERRORS as exc:
        return _failure(f"Failed to disable {name}", exc)
    return Outcome.ok(f"{name} has been disabled.")


def build_menu(output_dir: Path) -> list[MenuItem]:
    return [
        MenuItem("1", "Risky users", show_risky_users),
        MenuItem("2", "Risk detections", show_risk_detections),
        MenuItem("3", "Risky sign-ins", show_risky_sign_ins),
        MenuItem("4", "Failed sign-ins", show_failed_sign_ins),
        MenuItem("5", "Conditional Access risk posture", show_ca_posture),
        MenuItem("6", "Generate HTML/CSV report", lambda session: generate_report(session, output_dir)),
        MenuItem("7", "Disable a high-risk account", disable_risky_user),
    ]
