"""
Microsoft Graph API client with automatic pagination and retry logic.

Covers the application, credential, sign-in log, identity protection and
Conditional Access resources used by both tools. Respects Retry-After headers
on 429 responses and retries transient failures up to MAX_RETRIES times.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Generator

import requests
from rich.console import Console

console = Console()

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
MAX_RETRIES = 5
RETRY_BACKOFF_BASE = 2  # seconds; doubles each retry

APPLICATION_SELECT = (
    "id,appId,displayName,signInAudience,createdDateTime,web,"
    "requiredResourceAccess,passwordCredentials,appRoles,notes"
)


class GraphError(RuntimeError):
    """Non-success Graph response that is not an authorization failure."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Graph API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


def _error_message(resp: requests.Response) -> str:
    try:
        return resp.json().get("error", {}).get("message", resp.text)
    except ValueError:
        return resp.text


class GraphClient:
    """Thin wrapper around the Microsoft Graph REST API."""

    def __init__(self, access_token: str) -> None:
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            }
        )

    def _request(
        self,
        method: str,
        url: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> dict:
        """Single request with retry on 429 / transient errors. Returns {} for 204."""
        for attempt in range(MAX_RETRIES):
            try:
                resp = self._session.request(method, url, params=params, json=json, timeout=30)
            except requests.RequestException as exc:
                if attempt < MAX_RETRIES - 1:
                    wait = RETRY_BACKOFF_BASE ** attempt
                    console.print(f"[yellow]Network error ({exc}). Retrying in {wait}s...[/yellow]")
                    time.sleep(wait)
                    continue
                raise

            if resp.status_code == 204:
                return {}

            if 200 <= resp.status_code < 300:
                return resp.json() if resp.content else {}

            if resp.status_code == 429:
                try:
                    retry_after = int(resp.headers.get("Retry-After", RETRY_BACKOFF_BASE ** attempt))
                except ValueError:
                    retry_after = RETRY_BACKOFF_BASE ** attempt
                console.print(f"[yellow]Rate limited. Waiting {retry_after}s...[/yellow]")
                time.sleep(retry_after)
                continue

            if resp.status_code in (401, 403):
                raise PermissionError(f"Graph API access denied ({resp.status_code}): {_error_message(resp)}")

            if resp.status_code in (500, 502, 503, 504) and attempt < MAX_RETRIES - 1:
                wait = RETRY_BACKOFF_BASE ** attempt
                console.print(f"[yellow]Server error {resp.status_code}. Retrying in {wait}s...[/yellow]")
                time.sleep(wait)
                continue

            raise GraphError(resp.status_code, _error_message(resp))

        raise GraphError(429, f"request failed after {MAX_RETRIES} retries: {url}")

    def get_paged(self, path: str, params: dict | None = None, limit: int | None = None) -> Generator[dict, None, None]:
        """
        Yield individual items from a paged Graph API collection.

        Follows @odata.nextLink until all pages are consumed or limit items
        have been yielded.
        """
        url = f"{GRAPH_BASE}{path}"
        query: dict | None = {"$top": 999, **(params or {})}
        yielded = 0

        while url:
            data = self._request("GET", url, params=query)
            # On nextLink pages, params are already encoded in the URL
            query = None
            for item in data.get("value", []):
                yield item
                yielded += 1
                if limit is not None and yielded >= limit:
                    return
            url = data.get("@odata.nextLink")

    def get_one(self, path: str, params: dict | None = None) -> dict:
        """Fetch a single object (not a collection)."""
        return self._request("GET", f"{GRAPH_BASE}{path}", params=params)

    def post(self, path: str, body: dict) -> dict:
        return self._request("POST", f"{GRAPH_BASE}{path}", json=body)

    def patch(self, path: str, body: dict) -> dict:
        return self._request("PATCH", f"{GRAPH_BASE}{path}", json=body)

    def delete(self, path: str) -> dict:
        return self._request("DELETE", f"{GRAPH_BASE}{path}")

    # ── Signed-in account ────────────────────────────────────────────────────

    def get_me(self) -> dict:
        return self.get_one("/me", params={"$select": "id,displayName,userPrincipalName"})

    def get_organization(self) -> dict:
        """Return the first organization object (tenant details)."""
        data = self.get_one("/organization", params={"$select": "id,displayName"})
        orgs = data.get("value", [data])
        return orgs[0] if orgs else {}

    # ── Application registrations ────────────────────────────────────────────

    def list_applications(self) -> list[dict]:
        """Return every application registration in the tenant."""
        return list(self.get_paged("/applications", params={"$select": APPLICATION_SELECT}))

    def get_application(self, object_id: str) -> dict:
        return self.get_one(f"/applications/{object_id}", params={"$select": APPLICATION_SELECT})

    def create_application(
        self,
        display_name: str,
        sign_in_audience: str,
        redirect_uri: str | None = None,
    ) -> dict:
        body: dict = {"displayName": display_name, "signInAudience": sign_in_audience}
        if redirect_uri:
            body["web"] = {"redirectUris": [redirect_uri]}
        return self.post("/applications", body)

    def update_application(self, object_id: str, changes: dict) -> None:
        self.patch(f"/applications/{object_id}", changes)

    def delete_application(self, object_id: str) -> None:
        self.delete(f"/applications/{object_id}")

    def add_password(self, object_id: str, display_name: str, months: int = 12) -> dict:
        """
        Mint a client secret. The returned dict carries secretText, which Graph
        never returns again.
        """
        end = datetime.now(timezone.utc) + timedelta(days=round(months * 365 / 12))
        return self.post(
            f"/applications/{object_id}/addPassword",
            {
                "passwordCredential": {
                    "displayName": display_name,
                    "endDateTime": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
                }
            },
        )

    def get_service_principal_by_app_id(self, app_id: str) -> dict | None:
        """Resource service principal, used to resolve permission ids to names."""
        matches = list(
            self.get_paged(
                "/servicePrincipals",
                params={
                    "$filter": f"appId eq '{app_id}'",
                    "$select": "id,appId,displayName,appRoles,oauth2PermissionScopes",
                },
                limit=1,
            )
        )
        return matches[0] if matches else None

    # ── Sign-in logs ─────────────────────────────────────────────────────────

    def list_sign_ins(self, filter_expr: str | None = None, top: int = 50) -> list[dict]:
        """Most recent sign-ins first, capped at top records."""
        params: dict = {"$top": top, "$orderby": "createdDateTime desc"}
        if filter_expr:
            params["$filter"] = filter_expr
        return list(self.get_paged("/auditLogs/signIns", params=params, limit=top))

    def list_app_sign_ins(self, app_id: str, top: int = 20) -> list[dict]:
        return self.list_sign_ins(f"appId eq '{app_id}'", top=top)

    # ── Identity protection ──────────────────────────────────────────────────

    def list_risky_users(self) -> list[dict]:
        return list(
            self.get_paged(
                "/identityProtection/riskyUsers",
                params={
                    "$select": (
                        "id,userDisplayName,userPrincipalName,riskLevel,riskState,"
                        "riskDetail,riskLastUpdatedDateTime"
                    )
                },
            )
        )

    def list_risk_detections(self, top: int = 50) -> list[dict]:
        return list(
            self.get_paged(
                "/identityProtection/riskDetections",
                params={"$top": top, "$orderby": "detectedDateTime desc"},
                limit=top,
            )
        )

    def disable_user(self, user_id: str) -> None:
        self.patch(f"/users/{user_id}", {"accountEnabled": False})

    # ── Conditional Access ───────────────────────────────────────────────────

    def get_conditional_access_policies(self) -> list[dict]:
        """Return all Conditional Access policies. Requires Policy.Read.All."""
        return list(
            self.get_paged(
                "/identity/conditionalAccess/policies",
                params={
                    "$select": (
                        "id,displayName,state,conditions,grantControls,"
                        "createdDateTime,modifiedDateTime"
                    )
                },
            )
        )
