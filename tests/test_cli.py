"""
Unit tests for entra_toolkit/cli.py using click's CliRunner.

Sign-in and the menu loop are stubbed; these tests cover option wiring.
"""

import pytest
from click.testing import CliRunner

from conftest import FakeGraph
from entra_toolkit import cli
from entra_toolkit.apps import MAIN_ITEMS
from entra_toolkit.auth import GraphSession
from entra_toolkit.config import ENV_CLIENT_ID, ENV_TENANT_ID


@pytest.fixture
def wiring(monkeypatch, tmp_path):
    monkeypatch.delenv(ENV_TENANT_ID, raising=False)
    monkeypatch.delenv(ENV_CLIENT_ID, raising=False)
    monkeypatch.chdir(tmp_path)
    recorded = {}

    def fake_start_session(scopes, tenant_id, client_id, device_code=False):
        recorded.update(scopes=scopes, tenant_id=tenant_id, client_id=client_id, device_code=device_code)
        return GraphSession(client=FakeGraph(), tenant_id=tenant_id, account={"userPrincipalName": "admin@contoso.com"})

    def fake_run_menu(title, items, session, exit_label="Exit", header=None):
        recorded.update(title=title, items=items)

    monkeypatch.setattr(cli, "start_session", fake_start_session)
    monkeypatch.setattr(cli, "run_menu", fake_run_menu)
    return recorded


class TestApps:
    def test_runs_app_menu_and_exits_cleanly(self, wiring, tmp_path):
        result = CliRunner().invoke(cli.main, ["apps", "--log-dir", str(tmp_path / "logs")])
        assert result.exit_code == 0
        assert "Goodbye." in result.output
        assert wiring["items"] is MAIN_ITEMS
        assert wiring["scopes"] == cli.APP_ADMIN_SCOPES

    def test_flags_reach_sign_in(self, wiring, tmp_path):
        result = CliRunner().invoke(
            cli.apps_main,
            ["--tenant", "contoso.onmicrosoft.com", "-c", "client-9", "--device-code", "--log-dir", str(tmp_path)],
        )
        assert result.exit_code == 0
        assert wiring["tenant_id"] == "contoso.onmicrosoft.com"
        assert wiring["client_id"] == "client-9"
        assert wiring["device_code"] is True

    def test_missing_config_file_exits_before_sign_in(self, wiring, tmp_path):
        result = CliRunner().invoke(cli.apps_main, ["--config", str(tmp_path / "missing.json")])
        assert result.exit_code == 1
        assert "tenant_id" not in wiring


class TestRisk:
    def test_runs_risk_menu(self, wiring, tmp_path):
        result = CliRunner().invoke(cli.main, ["risk", "-o", str(tmp_path / "reports")])
        assert result.exit_code == 0
        assert wiring["scopes"] == cli.RISK_SCOPES
        assert [item.key for item in wiring["items"]] == ["1", "2", "3", "4", "5", "6", "7"]

    def test_version(self):
        result = CliRunner().invoke(cli.risk_main, ["--version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output
