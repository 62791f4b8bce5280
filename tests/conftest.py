"""
Shared fixtures: a fake Graph client, scripted console input, and an error
log redirected into each test's tmp_path.
"""

import builtins
import copy

import pytest

from entra_toolkit import apps, menu, risk
from entra_toolkit.auth import GraphSession
from entra_toolkit.errorlog import configure_error_log
from entra_toolkit.graph import GraphError


class FakeGraph:
    """In-memory stand-in for GraphClient. Records every mutating call."""

    def __init__(
        self,
        apps=None,
        service_principals=None,
        sign_ins=None,
        risky_users=None,
        detections=None,
        policies=None,
    ):
        self.apps = {a["id"]: copy.deepcopy(a) for a in (apps or [])}
        self.service_principals = service_principals or {}
        self.sign_ins = sign_ins or []
        self.risky_users = risky_users or []
        self.detections = detections or []
        self.policies = policies or []
        self.calls = []
        self.fail = set()

    def _check(self, name):
        if name in self.fail:
            raise GraphError(500, f"{name} exploded")

    def get_organization(self):
        self._check("get_organization")
        return {"id": "tenant-1", "displayName": "Contoso"}

    def list_applications(self):
        self._check("list_applications")
        return [copy.deepcopy(a) for a in self.apps.values()]

    def get_application(self, object_id):
        self._check("get_application")
        return copy.deepcopy(self.apps[object_id])

    def create_application(self, display_name, sign_in_audience, redirect_uri=None):
        self._check("create_application")
        self.calls.append(("create_application", display_name, sign_in_audience, redirect_uri))
        app = {
            "id": "obj-new",
            "appId": "app-new",
            "displayName": display_name,
            "signInAudience": sign_in_audience,
        }
        if redirect_uri:
            app["web"] = {"redirectUris": [redirect_uri]}
        self.apps[app["id"]] = app
        return copy.deepcopy(app)

    def update_application(self, object_id, changes):
        self._check("update_application")
        self.calls.append(("update_application", object_id, changes))
        self.apps[object_id].update(copy.deepcopy(changes))

    def delete_application(self, object_id):
        self._check("delete_application")
        self.calls.append(("delete_application", object_id))
        del self.apps[object_id]

    def add_password(self, object_id, display_name, months=12):
        self._check("add_password")
        self.calls.append(("add_password", object_id, display_name, months))
        credential = {
            "displayName": display_name,
            "keyId": f"key-{len(self.calls)}",
            "startDateTime": "2025-01-01T00:00:00Z",
            "endDateTime": "2099-01-01T00:00:00Z",
        }
        if object_id in self.apps:
            self.apps[object_id].setdefault("passwordCredentials", []).append(dict(credential))
        return {**credential, "secretText": "s3cr3t-value"}

    def get_service_principal_by_app_id(self, app_id):
        self._check("get_service_principal_by_app_id")
        return self.service_principals.get(app_id)

    def list_sign_ins(self, filter_expr=None, top=50):
        self._check("list_sign_ins")
        self.calls.append(("list_sign_ins", filter_expr, top))
        return list(self.sign_ins)

    def list_app_sign_ins(self, app_id, top=20):
        self._check("list_app_sign_ins")
        self.calls.append(("list_app_sign_ins", app_id, top))
        return [s for s in self.sign_ins if s.get("appId") == app_id]

    def list_risky_users(self):
        self._check("list_risky_users")
        return list(self.risky_users)

    def list_risk_detections(self, top=50):
        self._check("list_risk_detections")
        return list(self.detections)

    def disable_user(self, user_id):
        self._check("disable_user")
        self.calls.append(("disable_user", user_id))

    def get_conditional_access_policies(self):
        self._check("get_conditional_access_policies")
        return list(self.policies)


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep tables on one line per row so captured output can be searched."""
    for module in (apps, menu, risk):
        monkeypatch.setattr(module.console, "width", 200)


@pytest.fixture(autouse=True)
def error_log(tmp_path):
    """Route the error log into tmp_path and return its path."""
    return configure_error_log(tmp_path / "logs")


@pytest.fixture
def make_session():
    def _make(client):
        return GraphSession(client=client, tenant_id="contoso.onmicrosoft.com", account={"userPrincipalName": "admin@contoso.com"})
    return _make


@pytest.fixture
def answers(monkeypatch):
    """
    Script console input. Call with the lines to return, in order; any extra
    prompt fails the test instead of blocking on stdin.
    """
    queue: list[str] = []

    def fake_input(prompt=""):
        if not queue:
            raise AssertionError("unexpected prompt: no scripted input left")
        return queue.pop(0)

    monkeypatch.setattr(builtins, "input", fake_input)

    def _feed(*lines):
        queue.extend(lines)
        return queue

    return _feed
