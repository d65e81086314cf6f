"""
Connection management and preference queries used by the CLI and worker.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from sqlalchemy import func, select

from tcprefs_app.models import Connection, Preference, PreferenceRevision, db
from tcprefs_app.utils.logging_config import get_logger
from tcprefs_app.utils.text import locale_sort_key, matches_all_tokens, search_tokens

CONNECTION_FIELDS = ("name", "url", "description", "username", "password")


class ConnectionNotFound(LookupError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"No connection matches '{identifier}'.")
        self.identifier = identifier


# Connections ----------------------------------------------------------------------


def create_connection(
    *,
    name: str = "",
    url: str,
    description: str = "",
    username: str = "",
    password: str = "",
) -> Connection:
    if not (url or "").strip():
        raise ValueError("Connection URL must not be blank.")
    connection = Connection(
        name=name.strip(),
        url=url.strip(),
        description=description,
        username=username,
        password=password,
    )
    db.session.add(connection)
    db.session.commit()
    get_logger(__name__).info(
        "Connection created",
        extra={"prefs_connection_id": connection.id, "prefs_connection_url": connection.url},
    )
    return connection


def update_connection(connection: Connection, **changes) -> Connection:
    unknown = sorted(set(changes) - set(CONNECTION_FIELDS))
    if unknown:
        raise ValueError(f"Unknown connection field(s): {', '.join(unknown)}")
    for field_name, value in changes.items():
        if value is not None:
            setattr(connection, field_name, value)
    db.session.commit()
    return connection


def delete_connection(connection: Connection) -> None:
    """Delete a connection with its preferences, revisions and collections."""
    connection_id = connection.id
    db.session.delete(connection)
    db.session.commit()
    get_logger(__name__).info("Connection deleted", extra={"prefs_connection_id": connection_id})


def get_connection(identifier: str) -> Connection:
    """Resolve a connection by id, then by case-insensitive name, then by URL."""
    connection = db.session.get(Connection, identifier)
    if connection is None:
        connection = db.session.scalar(
            select(Connection).where(func.lower(Connection.name) == identifier.lower()).limit(1)
        )
    if connection is None:
        connection = db.session.scalar(select(Connection).where(Connection.url == identifier).limit(1))
    if connection is None:
        raise ConnectionNotFound(identifier)
    return connection


def list_connections() -> List[Connection]:
    connections = db.session.scalars(select(Connection)).all()
    return sorted(connections, key=lambda connection: locale_sort_key(connection.title))


def connection_title(connection: Connection | None, fallback: str = "Primary") -> str:
    if connection is None:
        return fallback
    return connection.title


# Preferences ----------------------------------------------------------------------


def _matches_search(preference: Preference, tokens: Sequence[str]) -> bool:
    haystack = [preference.name, preference.description, *preference.value_list, preference.comment or ""]
    return matches_all_tokens(tokens, haystack)


def list_preferences(
    connection: Connection,
    *,
    offset: int = 0,
    limit: int | None = None,
    category: str | None = None,
    scope: str | None = None,
    search: str | None = None,
) -> List[Preference]:
    """
    Page through a connection's preferences ordered by name.

    ``category`` and ``scope`` are exact filters (``"All"`` or ``None`` means
    no filter). ``search`` tokens must all occur in the name, description,
    values or comment. Paging applies after filtering.
    """
    stmt = select(Preference).where(Preference.connection_id == connection.id).order_by(Preference.name.asc())
    if category and category != "All":
        stmt = stmt.where(Preference.category == category)
    if scope and scope != "All":
        stmt = stmt.where(Preference.protection_scope == scope)

    tokens = search_tokens(search)
    if not tokens:
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(db.session.scalars(stmt))

    matched = [preference for preference in db.session.scalars(stmt) if _matches_search(preference, tokens)]
    end = None if limit is None else offset + limit
    return matched[offset:end]


def find_preferences(connection: Connection, names_or_terms: Sequence[str]) -> List[Preference]:
    """
    Resolve preferences by exact names and/or substring terms.

    A term containing a dot is an exact preference name; any other term is a
    case-insensitive substring of the name. Results are de-duplicated and
    sorted by name.
    """
    exact_names = [term for term in names_or_terms if "." in term]
    tokens = [term.lower() for term in names_or_terms if "." not in term and term]

    results: List[Preference] = []
    if exact_names:
        results.extend(
            db.session.scalars(
                select(Preference)
                .where(Preference.connection_id == connection.id)
                .where(Preference.name.in_(set(exact_names)))
            )
        )
    if tokens:
        pool = db.session.scalars(select(Preference).where(Preference.connection_id == connection.id))
        results.extend(
            preference for preference in pool if any(token in preference.name.lower() for token in tokens)
        )

    seen: set[str] = set()
    unique = []
    for preference in results:
        if preference.key in seen:
            continue
        seen.add(preference.key)
        unique.append(preference)
    return sorted(unique, key=lambda preference: locale_sort_key(preference.name))


def get_preference(connection: Connection, name: str) -> Preference | None:
    return db.session.scalar(
        select(Preference).where(Preference.connection_id == connection.id).where(Preference.name == name)
    )


def preference_history(preference: Preference) -> List[PreferenceRevision]:
    """Revisions of ``preference``, newest first."""
    return list(
        db.session.scalars(
            select(PreferenceRevision)
            .where(PreferenceRevision.preference_id == preference.id)
            .order_by(PreferenceRevision.captured_at.desc(), PreferenceRevision.id.desc())
        )
    )


def history_count(preference: Preference) -> int:
    return db.session.scalar(
        select(func.count(PreferenceRevision.id)).where(PreferenceRevision.preference_id == preference.id)
    )


def has_history(preference: Preference) -> bool:
    """True once a preference has changed at least once after its first capture."""
    return history_count(preference) > 1


def update_comment(preference: Preference, comment: str | None) -> Preference:
    preference.comment = comment
    db.session.commit()
    return preference


def _distinct_values(connection: Connection, column) -> List[str]:
    values = db.session.scalars(
        select(column).where(Preference.connection_id == connection.id).where(column != "").distinct()
    )
    return sorted(values)


def categories(connection: Connection) -> List[str]:
    return _distinct_values(connection, Preference.category)


def protection_scopes(connection: Connection) -> List[str]:
    return _distinct_values(connection, Preference.protection_scope)


def preferences_by_name(connection: Connection, names: Iterable[str]) -> List[Preference]:
    wanted = set(names)
    if not wanted:
        return []
    return list(
        db.session.scalars(
            select(Preference).where(Preference.connection_id == connection.id).where(Preference.name.in_(wanted))
        )
    )
