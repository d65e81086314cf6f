from __future__ import annotations

import pytest
import requests

from tcprefs_app.importer.adapters import (
    TeamcenterAuthError,
    TeamcenterClient,
    TeamcenterFetchError,
    TeamcenterSession,
    create_teamcenter_client,
)
from tcprefs_app.importer.adapters.teamcenter import RawPreferenceEntry
from tcprefs_app.importer.adapters.teamcenter.client import build_login_url, build_preferences_url

BASE_URL = "https://plm.example.com/"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, *, invalid_json=False):
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._invalid_json:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeHttpSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, json=None, timeout=None, verify=None):
        self.requests.append({"url": url, "json": json, "timeout": timeout, "verify": verify})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(http):
    return TeamcenterClient(timeout=12.5, verify=False, session_factory=lambda: http)


PREFERENCE_PAYLOAD = {
    "response": [
        {
            "definition": {
                "name": "TC_display_mode",
                "category": "Display",
                "description": "How lists render",
                "type": 1,
                "isArray": True,
                "isDisabled": False,
                "protectionScope": "User",
                "isEnvEnabled": True,
                "isOOTBPreference": True,
            },
            "values": {"valueOrigination": "Site", "values": ["compact", 3]},
        },
        {"definition": {"name": "TC_bare"}},
    ]
}


def test_urls_join_base_without_double_slashes():
    assert build_login_url(BASE_URL) == "https://plm.example.com/tc/JsonRestServices/Core-2011-06-Session/login"
    assert build_preferences_url("https://plm.example.com").endswith(
        "/tc/JsonRestServices/Administration-2012-09-PreferenceManagement/getPreferences"
    )


def test_login_and_fetch_round_trip():
    http = FakeHttpSession(FakeResponse(200, {"serverInfo": {}}), FakeResponse(200, PREFERENCE_PAYLOAD))
    client = _client(http)

    session = client.login(BASE_URL, "infodba", "secret")
    entries = client.fetch_preferences(session, ["*"], True)

    login_request, fetch_request = http.requests
    assert login_request["json"]["body"]["credentials"]["user"] == "infodba"
    assert login_request["json"]["body"]["credentials"]["password"] == "secret"
    assert login_request["timeout"] == 12.5
    assert login_request["verify"] is False
    assert fetch_request["json"]["body"] == {"preferenceNames": ["*"], "includePreferenceDescriptions": True}
    assert session.http is http

    first, bare = entries
    assert first.name == "TC_display_mode"
    assert first.definition.type == 1
    assert first.definition.is_array is True
    assert first.definition.is_ootb_preference is True
    assert first.definition.protection_scope == "User"
    assert first.values.value_origination == "Site"
    assert first.values.values == ["compact", "3"]
    assert bare.values is None
    assert bare.definition.category == ""


@pytest.mark.parametrize(
    "response, message",
    [
        (FakeResponse(401), "unauthorized"),
        (FakeResponse(503), "HTTP 503"),
        (FakeResponse(200, invalid_json=True), "unreadable"),
        (
            FakeResponse(
                200,
                {
                    ".QName": "http://teamcenter.com/Schemas/Soa/2006-03/Exceptions.InvalidCredentialsException",
                    "messages": [{"message": "Invalid user ID or password."}],
                },
            ),
            "Invalid user ID or password.",
        ),
        (requests.ConnectionError("connection refused"), "connection refused"),
    ],
)
def test_login_failures_raise_auth_error(response, message):
    client = _client(FakeHttpSession(response))

    with pytest.raises(TeamcenterAuthError) as exc_info:
        client.login(BASE_URL, "infodba", "wrong")

    assert message in str(exc_info.value)


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(403),
        FakeResponse(500),
        FakeResponse(200, invalid_json=True),
        FakeResponse(200, {"partialErrors": []}),
        FakeResponse(200, {"response": [{"definition": {}}]}),
        requests.Timeout("read timed out"),
    ],
)
def test_fetch_failures_raise_fetch_error(response):
    http = FakeHttpSession(response)
    session = TeamcenterSession(base_url=BASE_URL, username="infodba", http=http)

    with pytest.raises(TeamcenterFetchError):
        _client(http).fetch_preferences(session, ["*"], True)


def test_entry_from_payload_requires_name():
    with pytest.raises(TeamcenterFetchError):
        RawPreferenceEntry.from_payload({"definition": {"category": "Display"}})


def test_client_factory_reads_configuration(app):
    app.config.update(PREFS_HTTP_TIMEOUT_SECONDS=7, PREFS_VERIFY_TLS=False)

    client = create_teamcenter_client()

    assert client.timeout == 7.0
    assert client.verify is False


@pytest.mark.parametrize(
    "payload",
    [
        {"definition": {"name": "A.B", "type": "String"}},
        {"definition": {"name": "A.B"}, "values": ["x"]},
        {"definition": {"name": "A.B"}, "values": "x"},
        {"definition": {"name": "A.B"}, "values": {"values": "x"}},
        {"definition": {"name": "A.B", "isArray": "maybe"}},
        {"definition": {"name": "A.B", "isDisabled": 1}},
        {"definition": ["A.B"]},
        "A.B",
    ],
)
def test_malformed_entry_raises_fetch_error(payload):
    with pytest.raises(TeamcenterFetchError):
        RawPreferenceEntry.from_payload(payload)


def test_entry_flags_parse_strictly():
    entry = RawPreferenceEntry.from_payload(
        {"definition": {"name": "A.B", "type": "2", "isArray": "false", "isDisabled": "TRUE", "isEnvEnabled": None}}
    )

    assert entry.definition.type == 2
    assert entry.definition.is_array is False
    assert entry.definition.is_disabled is True
    assert entry.definition.is_env_enabled is False


def test_malformed_item_in_listing_raises_fetch_error():
    payload = {"response": [PREFERENCE_PAYLOAD["response"][0], {"definition": {"name": "A.B", "type": "String"}}]}
    http = FakeHttpSession(FakeResponse(200, payload))
    session = TeamcenterSession(base_url=BASE_URL, username="infodba", http=http)

    with pytest.raises(TeamcenterFetchError):
        _client(http).fetch_preferences(session, ["*"], True)
