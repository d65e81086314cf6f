"""
Teamcenter JSON REST client used by the preference importer.

Implements the two calls the importer needs: a session login and a
preference listing (definitions plus current values).
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Sequence

import requests

from tcprefs_app.importer.metrics import record_teamcenter_auth_attempt

from . import (
    RawPreferenceEntry,
    TeamcenterAuthError,
    TeamcenterFetchError,
    TeamcenterSession,
)

LOGIN_PATH = "/tc/JsonRestServices/Core-2011-06-Session/login"
GET_PREFERENCES_PATH = "/tc/JsonRestServices/Administration-2012-09-PreferenceManagement/getPreferences"
DEFAULT_TIMEOUT = 60.0


def build_login_url(base_url: str) -> str:
    return base_url.rstrip("/") + LOGIN_PATH


def build_preferences_url(base_url: str) -> str:
    return base_url.rstrip("/") + GET_PREFERENCES_PATH


def _service_envelope(body: Mapping[str, Any]) -> dict[str, Any]:
    return {"header": {"state": {}, "policy": {}}, "body": dict(body)}


def _service_exception_message(payload: Any) -> str | None:
    """Return the message of a Teamcenter service exception payload, if it is one."""

    if not isinstance(payload, Mapping):
        return None
    qname = str(payload.get(".QName") or "")
    if not qname.endswith("Exception"):
        return None
    messages = [
        str(item.get("message"))
        for item in payload.get("messages") or ()
        if isinstance(item, Mapping) and item.get("message")
    ]
    if messages:
        return "; ".join(messages)
    return str(payload.get("message") or qname)


class TeamcenterClient:
    """Talk to a Teamcenter server over JSON REST using a ``requests.Session``."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
        session_factory=requests.Session,
        logger: logging.Logger | None = None,
    ) -> None:
        self.timeout = timeout
        self.verify = verify
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger(__name__)

    # Public API -----------------------------------------------------------------

    def login(self, base_url: str, username: str, password: str) -> TeamcenterSession:
        http = self.session_factory()
        body = {
            "credentials": {
                "user": username,
                "password": password,
                "role": "",
                "descrimator": "",
                "locale": "",
                "group": "",
            }
        }
        url = build_login_url(base_url)
        try:
            response = http.post(url, json=_service_envelope(body), timeout=self.timeout, verify=self.verify)
        except requests.RequestException as exc:
            record_teamcenter_auth_attempt("failure")
            raise TeamcenterAuthError(f"Teamcenter login request failed: {exc}") from exc

        if response.status_code in (401, 403):
            record_teamcenter_auth_attempt("failure")
            raise TeamcenterAuthError(f"Teamcenter login unauthorized (HTTP {response.status_code}).")
        if not response.ok:
            record_teamcenter_auth_attempt("failure")
            raise TeamcenterAuthError(f"Teamcenter login failed with HTTP {response.status_code}.")

        try:
            payload = response.json()
        except ValueError as exc:
            record_teamcenter_auth_attempt("failure")
            raise TeamcenterAuthError("Teamcenter login returned an unreadable response.") from exc

        error_message = _service_exception_message(payload)
        if error_message:
            record_teamcenter_auth_attempt("failure")
            raise TeamcenterAuthError(f"Teamcenter login rejected: {error_message}")

        record_teamcenter_auth_attempt("success")
        self.logger.debug("Teamcenter login succeeded", extra={"tc_base_url": base_url, "tc_username": username})
        return TeamcenterSession(base_url=base_url, username=username, http=http)

    def fetch_preferences(
        self,
        session: TeamcenterSession,
        name_patterns: Sequence[str],
        include_descriptions: bool,
    ) -> List[RawPreferenceEntry]:
        body = {
            "preferenceNames": list(name_patterns),
            "includePreferenceDescriptions": bool(include_descriptions),
        }
        url = build_preferences_url(session.base_url)
        http = session.http or self.session_factory()
        try:
            response = http.post(url, json=_service_envelope(body), timeout=self.timeout, verify=self.verify)
        except requests.RequestException as exc:
            raise TeamcenterFetchError(f"Teamcenter preference request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise TeamcenterFetchError(f"Teamcenter session unauthorized (HTTP {response.status_code}).")
        if not response.ok:
            raise TeamcenterFetchError(f"Teamcenter preference fetch failed with HTTP {response.status_code}.")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TeamcenterFetchError("Teamcenter preference response is not valid JSON.") from exc

        error_message = _service_exception_message(payload)
        if error_message:
            raise TeamcenterFetchError(f"Teamcenter preference fetch rejected: {error_message}")
        if not isinstance(payload, Mapping) or not isinstance(payload.get("response"), list):
            raise TeamcenterFetchError("Teamcenter preference response has no 'response' list.")

        entries = [RawPreferenceEntry.from_payload(item) for item in payload["response"]]
        self.logger.debug(
            "Teamcenter preferences fetched",
            extra={"tc_base_url": session.base_url, "tc_preference_count": len(entries)},
        )
        return entries


def create_teamcenter_client() -> TeamcenterClient:
    """Instantiate a client using the active Flask configuration when available."""

    timeout = DEFAULT_TIMEOUT
    verify = True
    try:
        from flask import current_app

        timeout = float(current_app.config.get("PREFS_HTTP_TIMEOUT_SECONDS", DEFAULT_TIMEOUT))
        verify = bool(current_app.config.get("PREFS_VERIFY_TLS", True))
    except RuntimeError:
        # No Flask app context; keep defaults
        pass
    return TeamcenterClient(timeout=timeout, verify=verify)
