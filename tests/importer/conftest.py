from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Sequence

import pytest

from tcprefs_app.importer.adapters import (
    PreferenceDefinition,
    PreferenceValues,
    RawPreferenceEntry,
    TeamcenterAuthError,
    TeamcenterFetchError,
    TeamcenterSession,
)
from tcprefs_app.models import Connection, db

BASE_TIME = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def build_entry(
    name: str,
    values: Sequence[str] | None = ("x",),
    *,
    category: str = "General",
    description: str = "",
    type: int = 0,
    is_array: bool = False,
    is_disabled: bool = False,
    protection_scope: str = "Site",
    is_env_enabled: bool = False,
    is_ootb_preference: bool = False,
    value_origination: str | None = "Site",
) -> RawPreferenceEntry:
    definition = PreferenceDefinition(
        name=name,
        category=category,
        description=description,
        type=type,
        is_array=is_array,
        is_disabled=is_disabled,
        protection_scope=protection_scope,
        is_env_enabled=is_env_enabled,
        is_ootb_preference=is_ootb_preference,
    )
    if values is None:
        return RawPreferenceEntry(definition=definition, values=None)
    return RawPreferenceEntry(
        definition=definition,
        values=PreferenceValues(value_origination=value_origination, values=list(values)),
    )


class FakeAdapter:
    """In-memory preference source recording every call."""

    def __init__(
        self,
        entries: Iterable[RawPreferenceEntry] = (),
        *,
        login_error: str | None = None,
        fetch_error: str | None = None,
    ) -> None:
        self.entries: List[RawPreferenceEntry] = list(entries)
        self.login_error = login_error
        self.fetch_error = fetch_error
        self.logins: list[tuple[str, str, str]] = []
        self.fetches: list[tuple[list[str], bool]] = []

    def login(self, base_url: str, username: str, password: str) -> TeamcenterSession:
        self.logins.append((base_url, username, password))
        if self.login_error:
            raise TeamcenterAuthError(self.login_error)
        return TeamcenterSession(base_url=base_url, username=username)

    def fetch_preferences(self, session, name_patterns, include_descriptions):
        self.fetches.append((list(name_patterns), include_descriptions))
        if self.fetch_error:
            raise TeamcenterFetchError(self.fetch_error)
        return list(self.entries)


class TickingClock:
    """Returns a strictly increasing time, one second per call."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + self.step
        return value

    def advance(self, delta: timedelta) -> None:
        self.current += delta


@pytest.fixture
def make_entry() -> Callable[..., RawPreferenceEntry]:
    return build_entry


@pytest.fixture
def fake_adapter() -> Callable[..., FakeAdapter]:
    return FakeAdapter


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def connection_factory(app) -> Callable[..., Connection]:
    counter = {"value": 0}

    def _factory(*, name: str | None = None, url: str | None = None, **fields) -> Connection:
        counter["value"] += 1
        index = counter["value"]
        connection = Connection(
            name=f"TC {index}" if name is None else name,
            url=url or f"https://tc{index}.example.com",
            username=fields.pop("username", "infodba"),
            password=fields.pop("password", "secret"),
            **fields,
        )
        db.session.add(connection)
        db.session.commit()
        return connection

    return _factory


@pytest.fixture
def connection(connection_factory) -> Connection:
    return connection_factory(name="Production")
