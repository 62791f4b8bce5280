"""
Report generation for entra-risk.

Produces:
  - Self-contained HTML posture report (inline CSS, works offline)
  - CSV export (one row per risky user)
"""

from __future__ import annotations

import csv
import re
from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape
from rich.console import Console

from . import __version__
from .risk_analyzer import RISK_LEVELS, RiskPosture

console = Console()

TEMPLATES_DIR = Path(__file__).parent / "templates"


# ── Jinja2 filters ─────────────────────────────────────────────────────────────


def format_timestamp(value: str | None, with_time: bool = False) -> str:
    """Render a Graph ISO 8601 timestamp as a date (or date and time)."""
    if not value:
        return "—"
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00")[:19])
        return dt.strftime("%Y-%m-%d %H:%M" if with_time else "%Y-%m-%d")
    except (ValueError, TypeError):
        return value


def _tenant_slug(display_name: str) -> str:
    """Sanitize a tenant display name for use in file paths."""
    return re.sub(r"[^\w\-]", "_", display_name).lower()


def _build_jinja_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        # Include "html.j2" and "j2" so templates named *.html.j2 are also escaped
        autoescape=select_autoescape(["html", "html.j2", "j2"]),
    )
    env.filters["format_date"] = format_timestamp
    return env


# ── Recommendations ──────────────────────────────────────────────────────────


def _recommendations(posture: RiskPosture) -> list[dict]:
    """Derive up to 3 high-level recommendations from the posture."""
    recs = []

    if posture.uncovered_sign_in_levels:
        levels = ", ".join(posture.uncovered_sign_in_levels)
        recs.append({
            "text": f"Add an enforced sign-in risk policy for: {levels}",
            "sub": "No enabled Conditional Access policy responds to these sign-in risk levels. "
                   "Require MFA (or block) for medium and high sign-in risk.",
        })

    if posture.uncovered_user_levels:
        levels = ", ".join(posture.uncovered_user_levels)
        recs.append({
            "text": f"Add an enforced user risk policy for: {levels}",
            "sub": "Users flagged at these levels are not forced through a password change or block.",
        })

    high_users = posture.risky_user_counts.get("high", 0)
    if high_users > 0:
        recs.append({
            "text": f"Investigate {high_users} high-risk user(s)",
            "sub": "Confirm compromise or dismiss the risk after review. Disable accounts only "
                   "after the investigation confirms compromise.",
        })

    report_only = [p for p in posture.policies if p.is_risk_based and p.state == "enabledForReportingButNotEnforced"]
    if report_only and len(recs) < 3:
        recs.append({
            "text": f"Review {len(report_only)} report-only risk policy(ies) for enforcement",
            "sub": "Report-only policies log their decision but do not protect sign-ins.",
        })

    if not recs:
        recs.append({
            "text": "Maintain regular risk reviews",
            "sub": "Every risk level is covered by an enforced policy and no users are at high risk.",
        })

    return recs[:3]


# ── HTML report ────────────────────────────────────────────────────────────────


def generate_html(
    posture: RiskPosture,
    risky_users: list[dict],
    detections: list[dict],
    tenant_name: str,
    output_path: Path,
) -> Path:
    """Render the HTML report and write to output_path."""
    env = _build_jinja_env()
    try:
        template = env.get_template("risk_report.html.j2")
    except Exception as exc:
        console.print(f"[red]Error loading report template: {exc}[/red]")
        raise

    at_risk_users = sorted(
        [u for u in risky_users if u.get("riskState") == "atRisk"],
        key=lambda u: RISK_LEVELS.index(u["riskLevel"]) if u.get("riskLevel") in RISK_LEVELS else len(RISK_LEVELS),
    )

    html_content = template.render(
        tenant_name=tenant_name,
        generated_at=datetime.now().astimezone().strftime("%Y-%m-%d %H:%M %Z"),
        version=__version__,
        risk_levels=RISK_LEVELS,
        posture=posture,
        recommendations=_recommendations(posture),
        at_risk_users=at_risk_users,
        detections=detections,
    )

    output_path.write_text(html_content, encoding="utf-8")
    return output_path


# ── CSV export ─────────────────────────────────────────────────────────────────


def _csv_safe(value: str) -> str:
    """Prefix formula-triggering characters so spreadsheets treat them as literals."""
    if value and value[0] in ("=", "+", "-", "@", "\t", "\r"):
        return "'" + value
    return value


def generate_csv(risky_users: list[dict], output_path: Path) -> Path:
    """Write a flat CSV with one row per risky user."""
    fieldnames = [
        "user_display_name",
        "user_principal_name",
        "user_id",
        "risk_level",
        "risk_state",
        "risk_detail",
        "risk_last_updated",
    ]

    with output_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for user in risky_users:
            writer.writerow(
                {
                    "user_display_name": _csv_safe(user.get("userDisplayName") or ""),
                    "user_principal_name": _csv_safe(user.get("userPrincipalName") or ""),
                    "user_id": user.get("id", ""),
                    "risk_level": user.get("riskLevel", ""),
                    "risk_state": user.get("riskState", ""),
                    "risk_detail": user.get("riskDetail", ""),
                    "risk_last_updated": user.get("riskLastUpdatedDateTime") or "",
                }
            )

    return output_path


# ── Orchestrator ───────────────────────────────────────────────────────────────


def generate_all(
    posture: RiskPosture,
    risky_users: list[dict],
    detections: list[dict],
    tenant_name: str,
    output_dir: Path,
) -> dict[str, Path]:
    """Generate HTML and CSV reports. Returns dict of format → output path."""
    output_dir.mkdir(parents=True, exist_ok=True)

    date_slug = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    base = output_dir / f"entra_risk_{_tenant_slug(tenant_name)}_{date_slug}"

    html_out = generate_html(posture, risky_users, detections, tenant_name, Path(str(base) + ".html"))
    console.print(f"[green]HTML:[/green] {html_out}")
    csv_out = generate_csv(risky_users, Path(str(base) + ".csv"))
    console.print(f"[green]CSV: [/green] {csv_out}")

    return {"html": html_out, "csv": csv_out}
