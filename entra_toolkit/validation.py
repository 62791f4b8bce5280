"""
Input validation and list selection helpers.

Pure functions with no I/O; the interactive handlers in apps.py call these
and re-prompt or report on a None result.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

MIN_DISPLAY_NAME_LENGTH = 3

_FRACTION_RE = re.compile(r"(\d*)(.*)")

SIGN_IN_AUDIENCES: dict[str, str] = {
    "1": "AzureADMyOrg",
    "2": "AzureADMultipleOrgs",
    "3": "AzureADandPersonalMicrosoftAccount",
}

AUDIENCE_LABELS: dict[str, str] = {
    "AzureADMyOrg": "Accounts in this organizational directory only",
    "AzureADMultipleOrgs": "Accounts in any organizational directory",
    "AzureADandPersonalMicrosoftAccount": "Any organizational directory and personal Microsoft accounts",
    "PersonalMicrosoftAccount": "Personal Microsoft accounts only",
}

REDIRECT_URI_SCHEMES = ("http://", "https://")


def is_valid_display_name(name: str) -> bool:
    return len(name) >= MIN_DISPLAY_NAME_LENGTH


def is_valid_redirect_uri(uri: str) -> bool:
    """True only for http:// or https:// URIs (scheme match is case-insensitive)."""
    return uri.lower().startswith(REDIRECT_URI_SCHEMES)


def parse_audience_choice(choice: str) -> str | None:
    """Map the literal menu choices "1", "2", "3" to a signInAudience value."""
    return SIGN_IN_AUDIENCES.get(choice)


def filter_and_sort_apps(apps: list[dict], term: str = "") -> list[dict]:
    """
    Case-insensitive substring filter on displayName, sorted by displayName.

    An empty (or whitespace-only) term returns every app.
    """
    needle = term.strip().lower()
    matches = [
        app for app in apps
        if not needle or needle in (app.get("displayName") or "").lower()
    ]
    return sorted(matches, key=lambda app: (app.get("displayName") or "").lower())


def parse_selection(text: str, count: int) -> int | None:
    """
    Turn a 1-based menu selection into a 0-based index.

    The text is parsed first; anything non-numeric is invalid. Only then is the
    value checked against 1..count.
    """
    try:
        number = int(text.strip())
    except ValueError:
        return None
    if 1 <= number <= count:
        return number - 1
    return None


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        # Graph returns ISO 8601 with trailing Z and up to 7 fractional digits
        head, _, frac = value.replace("Z", "+00:00").partition(".")
        if frac:
            digits, offset = _FRACTION_RE.match(frac).groups()
            # fromisoformat before 3.11 only takes exactly 3 or 6 digits
            value = f"{head}.{digits[:6].ljust(6, '0')}{offset}"
        else:
            value = head
        dt = datetime.fromisoformat(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, TypeError):
        return None


def credential_status(credential: dict, now: datetime | None = None) -> str:
    """
    "Expired" when the credential's endDateTime is before now, else "Active".

    A credential with no parseable end time never expires.
    """
    now = now or datetime.now(timezone.utc)
    end = _parse_dt(credential.get("endDateTime"))
    if end is not None and end < now:
        return "Expired"
    return "Active"
