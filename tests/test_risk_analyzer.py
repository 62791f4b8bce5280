"""
Unit tests for entra_toolkit/risk_analyzer.py.

No mocks needed: risk_analyzer.py contains pure functions only.
"""

from datetime import datetime, timezone

import pytest

from entra_toolkit.risk_analyzer import (
    PolicySummary,
    analyze_risk_posture,
    is_remediation_candidate,
    parse_policies,
    risk_level_counts,
    risky_sign_ins,
    sign_ins_since_filter,
)


# ── Fixtures ───────────────────────────────────────────────────────────────────


def _make_policy(
    *,
    policy_id: str = "policy-1",
    display_name: str = "Test Policy",
    state: str = "enabled",
    sign_in_risk: list | None = None,
    user_risk: list | None = None,
    controls: list | None = None,
    include_users: list | None = None,
) -> dict:
    """Return a minimal CA policy dict suitable for testing."""
    return {
        "id": policy_id,
        "displayName": display_name,
        "state": state,
        "conditions": {
            "signInRiskLevels": sign_in_risk if sign_in_risk is not None else [],
            "userRiskLevels": user_risk if user_risk is not None else [],
            "users": {"includeUsers": include_users if include_users is not None else ["All"]},
        },
        "grantControls": {"operator": "OR", "builtInControls": controls if controls is not None else ["mfa"]},
        "createdDateTime": "2024-01-01T00:00:00Z",
        "modifiedDateTime": "2024-06-01T00:00:00Z",
    }


def _make_user(*, level: str = "high", state: str = "atRisk", upn: str = "user@contoso.com") -> dict:
    return {"id": f"id-{upn}", "userPrincipalName": upn, "riskLevel": level, "riskState": state}


# ── parse_policies ─────────────────────────────────────────────────────────────


class TestParsePolicies:
    def test_risk_levels_are_lowercased(self):
        [summary] = parse_policies([_make_policy(sign_in_risk=["High", "MEDIUM"])])
        assert summary.sign_in_risk_levels == ["high", "medium"]

    def test_grant_controls_captured(self):
        [summary] = parse_policies([_make_policy(controls=["mfa", "passwordChange"])])
        assert summary.grant_controls == ["mfa", "passwordChange"]

    def test_all_users_detected(self):
        [summary] = parse_policies([_make_policy(include_users=["All"])])
        assert summary.includes_all_users

    def test_specific_users_not_all(self):
        [summary] = parse_policies([_make_policy(include_users=["user-1"])])
        assert not summary.includes_all_users

    def test_missing_sections_tolerated(self):
        [summary] = parse_policies([{"id": "p", "displayName": "Bare"}])
        assert summary.state == "disabled"
        assert summary.sign_in_risk_levels == []
        assert summary.grant_controls == []
        assert not summary.is_risk_based

    def test_null_grant_controls_tolerated(self):
        policy = _make_policy()
        policy["grantControls"] = None
        [summary] = parse_policies([policy])
        assert summary.grant_controls == []


# ── analyze_risk_posture ───────────────────────────────────────────────────────


class TestEnforcedCoverage:
    """Only enabled policies close a coverage gap."""

    def test_enabled_sign_in_policy_covers_its_levels(self):
        policy = _make_policy(display_name="MFA on risky sign-in", sign_in_risk=["high", "medium"])
        posture = analyze_risk_posture([policy], [], [])
        assert posture.sign_in_risk_coverage["high"] == ["MFA on risky sign-in"]
        assert posture.sign_in_risk_coverage["medium"] == ["MFA on risky sign-in"]
        assert posture.uncovered_sign_in_levels == ["low"]

    def test_user_risk_tracked_separately(self):
        policy = _make_policy(user_risk=["high"], controls=["passwordChange"])
        posture = analyze_risk_posture([policy], [], [])
        assert posture.user_risk_coverage["high"] == ["Test Policy"]
        assert posture.uncovered_sign_in_levels == ["high", "medium", "low"]
        assert posture.uncovered_user_levels == ["medium", "low"]

    def test_disabled_policy_does_not_cover(self):
        policy = _make_policy(state="disabled", sign_in_risk=["high"])
        posture = analyze_risk_posture([policy], [], [])
        assert "high" in posture.uncovered_sign_in_levels

    def test_report_only_policy_does_not_cover(self):
        policy = _make_policy(state="enabledForReportingButNotEnforced", sign_in_risk=["high"])
        posture = analyze_risk_posture([policy], [], [])
        assert posture.sign_in_risk_coverage["high"] == []

    def test_non_enforced_policies_still_listed(self):
        policies = [
            _make_policy(policy_id="a", state="disabled", sign_in_risk=["high"]),
            _make_policy(policy_id="b", state="enabledForReportingButNotEnforced"),
        ]
        posture = analyze_risk_posture(policies, [], [])
        assert len(posture.policies) == 2
        assert posture.risk_policy_count == 1

    def test_multiple_policies_on_one_level(self):
        policies = [
            _make_policy(policy_id="a", display_name="Policy A", sign_in_risk=["high"]),
            _make_policy(policy_id="b", display_name="Policy B", sign_in_risk=["high"]),
        ]
        posture = analyze_risk_posture(policies, [], [])
        assert posture.sign_in_risk_coverage["high"] == ["Policy A", "Policy B"]

    def test_none_level_is_not_a_coverage_level(self):
        policy = _make_policy(sign_in_risk=["none"])
        posture = analyze_risk_posture([policy], [], [])
        assert posture.uncovered_sign_in_levels == ["high", "medium", "low"]

    def test_no_policies_leaves_everything_uncovered(self):
        posture = analyze_risk_posture([], [], [])
        assert posture.policies == []
        assert posture.uncovered_sign_in_levels == ["high", "medium", "low"]
        assert posture.uncovered_user_levels == ["high", "medium", "low"]


class TestRiskCounts:
    def test_only_at_risk_users_counted(self):
        users = [
            _make_user(level="high"),
            _make_user(level="medium", upn="b@contoso.com"),
            _make_user(level="high", state="remediated", upn="c@contoso.com"),
            _make_user(level="low", state="dismissed", upn="d@contoso.com"),
        ]
        posture = analyze_risk_posture([], users, [])
        assert posture.at_risk_user_count == 2
        assert posture.risky_user_counts == {"high": 1, "medium": 1, "low": 0, "none": 0}

    def test_detections_counted_regardless_of_state(self):
        detections = [
            {"riskLevel": "high", "riskState": "atRisk"},
            {"riskLevel": "low", "riskState": "dismissed"},
        ]
        posture = analyze_risk_posture([], [], detections)
        assert posture.detection_counts["high"] == 1
        assert posture.detection_counts["low"] == 1

    def test_risk_level_counts_ignores_unknown_levels(self):
        counts = risk_level_counts([{"riskLevel": "hidden"}, {"riskLevel": None}, {"riskLevel": "High"}])
        assert counts == {"high": 1, "medium": 0, "low": 0, "none": 1}

    def test_custom_key(self):
        counts = risk_level_counts([{"riskLevelDuringSignIn": "medium"}], key="riskLevelDuringSignIn")
        assert counts["medium"] == 1


# ── Sign-in helpers ────────────────────────────────────────────────────────────


class TestSignInHelpers:
    def test_since_filter_uses_utc_iso_timestamp(self):
        now = datetime(2025, 6, 8, 12, 30, tzinfo=timezone.utc)
        assert sign_ins_since_filter(7, now=now) == "createdDateTime ge 2025-06-01T12:30:00Z"

    def test_risky_sign_ins_excludes_none_and_hidden(self):
        sign_ins = [
            {"id": "1", "riskLevelDuringSignIn": "high"},
            {"id": "2", "riskLevelDuringSignIn": "none"},
            {"id": "3", "riskLevelDuringSignIn": "hidden"},
            {"id": "4", "riskLevelDuringSignIn": "low"},
            {"id": "5"},
        ]
        assert [s["id"] for s in risky_sign_ins(sign_ins)] == ["1", "4"]


class TestRemediationCandidate:
    @pytest.mark.parametrize("level,state,expected", [
        ("high", "atRisk", True),
        ("medium", "atRisk", False),
        ("high", "remediated", False),
        ("high", "dismissed", False),
        ("high", "confirmedCompromised", False),
    ])
    def test_only_high_and_at_risk(self, level, state, expected):
        assert is_remediation_candidate(_make_user(level=level, state=state)) is expected


# ── PolicySummary properties ───────────────────────────────────────────────────


class TestPolicySummaryProperties:
    """state_label and state_css return correct values."""

    def _make_summary(self, state: str, sign_in_risk: list | None = None) -> PolicySummary:
        return PolicySummary(
            policy_id="test-id",
            display_name="Test",
            state=state,
            sign_in_risk_levels=sign_in_risk or [],
            user_risk_levels=[],
            grant_controls=[],
            includes_all_users=True,
            modified_datetime=None,
        )

    def test_enabled_state_label(self):
        assert self._make_summary("enabled").state_label == "Enabled"

    def test_enabled_state_css(self):
        assert self._make_summary("enabled").state_css == "ca-state-enabled"

    def test_disabled_state_label(self):
        assert self._make_summary("disabled").state_label == "Disabled"

    def test_report_only_state_label(self):
        assert self._make_summary("enabledForReportingButNotEnforced").state_label == "Report-only"

    def test_report_only_state_css(self):
        assert self._make_summary("enabledForReportingButNotEnforced").state_css == "ca-state-report"

    def test_unknown_state_label_falls_back_to_state_value(self):
        assert self._make_summary("unknownState").state_label == "unknownState"

    def test_unknown_state_css_returns_empty_string(self):
        assert self._make_summary("unknownState").state_css == ""

    def test_is_enforced_only_for_enabled(self):
        assert self._make_summary("enabled").is_enforced is True
        assert self._make_summary("disabled").is_enforced is False
        assert self._make_summary("enabledForReportingButNotEnforced").is_enforced is False

    def test_is_risk_based(self):
        assert self._make_summary("enabled", sign_in_risk=["high"]).is_risk_based
        assert not self._make_summary("enabled").is_risk_based
