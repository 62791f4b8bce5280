"""
Sign-in and user risk posture analysis for entra-risk.

Cross-references Conditional Access policies against the risk levels Identity
Protection reports, to show which sign-in and user risk levels are met by at
least one enforced policy.

This module contains pure functions with no I/O.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

RISK_LEVELS = ("high", "medium", "low")
ALL_RISK_LEVELS = RISK_LEVELS + ("none",)


@dataclass
class PolicySummary:
    """Summarised view of a single CA policy, focused on its risk conditions."""

    policy_id: str
    display_name: str
    state: str  # enabled | disabled | enabledForReportingButNotEnforced
    sign_in_risk_levels: list[str]
    user_risk_levels: list[str]
    grant_controls: list[str]
    includes_all_users: bool
    modified_datetime: str | None

    @property
    def is_enforced(self) -> bool:
        return self.state == "enabled"

    @property
    def is_risk_based(self) -> bool:
        return bool(self.sign_in_risk_levels or self.user_risk_levels)

    @property
    def state_label(self) -> str:
        return {
            "enabled": "Enabled",
            "disabled": "Disabled",
            "enabledForReportingButNotEnforced": "Report-only",
        }.get(self.state, self.state)

    @property
    def state_css(self) -> str:
        return {
            "enabled": "ca-state-enabled",
            "disabled": "ca-state-disabled",
            "enabledForReportingButNotEnforced": "ca-state-report",
        }.get(self.state, "")


@dataclass
class RiskPosture:
    """Aggregate view of tenant risk and the CA policies that respond to it."""

    policies: list[PolicySummary]
    risky_user_counts: dict[str, int]
    detection_counts: dict[str, int]
    at_risk_user_count: int
    sign_in_risk_coverage: dict[str, list[str]] = field(default_factory=dict)
    user_risk_coverage: dict[str, list[str]] = field(default_factory=dict)

    @property
    def uncovered_sign_in_levels(self) -> list[str]:
        return [level for level in RISK_LEVELS if not self.sign_in_risk_coverage.get(level)]

    @property
    def uncovered_user_levels(self) -> list[str]:
        return [level for level in RISK_LEVELS if not self.user_risk_coverage.get(level)]

    @property
    def risk_policy_count(self) -> int:
        return sum(1 for p in self.policies if p.is_risk_based)


def parse_policies(ca_policies: list[dict]) -> list[PolicySummary]:
    """Convert raw Graph CA policy dicts into PolicySummary objects."""
    summaries = []
    for p in ca_policies:
        conditions = p.get("conditions") or {}
        users_cond = conditions.get("users") or {}
        grant = p.get("grantControls") or {}
        summaries.append(
            PolicySummary(
                policy_id=p.get("id", ""),
                display_name=p.get("displayName", "(unnamed)"),
                state=p.get("state", "disabled"),
                sign_in_risk_levels=[lvl.lower() for lvl in conditions.get("signInRiskLevels") or []],
                user_risk_levels=[lvl.lower() for lvl in conditions.get("userRiskLevels") or []],
                grant_controls=list(grant.get("builtInControls") or []),
                includes_all_users=any(u.lower() == "all" for u in users_cond.get("includeUsers") or []),
                modified_datetime=p.get("modifiedDateTime"),
            )
        )
    return summaries


def risk_level_counts(items: list[dict], key: str = "riskLevel") -> dict[str, int]:
    """Count items per risk level; unknown or hidden levels are not counted."""
    counter = Counter((item.get(key) or "none").lower() for item in items)
    return {level: counter.get(level, 0) for level in ALL_RISK_LEVELS}


def _coverage(policies: list[PolicySummary], attr: str) -> dict[str, list[str]]:
    coverage: dict[str, list[str]] = {level: [] for level in RISK_LEVELS}
    for policy in policies:
        if not policy.is_enforced:
            continue
        for level in getattr(policy, attr):
            if level in coverage:
                coverage[level].append(policy.display_name)
    return coverage


def analyze_risk_posture(
    ca_policies: list[dict],
    risky_users: list[dict],
    detections: list[dict],
) -> RiskPosture:
    """
    Summarise risk signals and CA coverage.

    Only enforced (state == "enabled") policies count as coverage; report-only
    and disabled policies are listed but do not close a gap. Risky user counts
    consider users whose riskState is still atRisk.
    """
    policies = parse_policies(ca_policies)
    at_risk = [u for u in risky_users if u.get("riskState") == "atRisk"]
    return RiskPosture(
        policies=policies,
        risky_user_counts=risk_level_counts(at_risk),
        detection_counts=risk_level_counts(detections),
        at_risk_user_count=len(at_risk),
        sign_in_risk_coverage=_coverage(policies, "sign_in_risk_levels"),
        user_risk_coverage=_coverage(policies, "user_risk_levels"),
    )


def sign_ins_since_filter(days: int, now: datetime | None = None) -> str:
    """OData filter selecting sign-ins created in the last `days` days."""
    now = now or datetime.now(timezone.utc)
    since = (now - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"createdDateTime ge {since}"


def risky_sign_ins(sign_ins: list[dict]) -> list[dict]:
    """Sign-ins Identity Protection rated low, medium or high at sign-in time."""
    return [s for s in sign_ins if (s.get("riskLevelDuringSignIn") or "none").lower() in RISK_LEVELS]


def is_remediation_candidate(risky_user: dict) -> bool:
    """Only confirmed high-risk users that are still at risk may be disabled."""
    return risky_user.get("riskLevel") == "high" and risky_user.get("riskState") == "atRisk"
