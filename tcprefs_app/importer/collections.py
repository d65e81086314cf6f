"""
Preference collections: named, per-connection groupings of preferences.
"""

from __future__ import annotations

from typing import Iterable, List

from sqlalchemy import func, select

from tcprefs_app.models import (
    Connection,
    Preference,
    PreferenceCollection,
    PreferenceCollectionMembership,
    collection_key,
    db,
)
from tcprefs_app.utils.logging_config import get_logger
from tcprefs_app.utils.text import locale_sort_key


class CollectionNotEmpty(RuntimeError):
    """Raised when deleting a collection that still has members."""

    def __init__(self, collection: PreferenceCollection, member_count: int) -> None:
        super().__init__(
            f"Collection '{collection.name}' still holds {member_count} preference(s); "
            "remove them first or force the delete."
        )
        self.collection_id = collection.id
        self.member_count = member_count


def find_collection(connection: Connection, name: str) -> PreferenceCollection | None:
    key = collection_key(connection.id, name.strip())
    return db.session.scalar(select(PreferenceCollection).where(PreferenceCollection.key == key))


def get_or_create_collection(connection: Connection, name: str) -> PreferenceCollection:
    """Return the connection's collection matching ``name`` case-insensitively, creating it if needed."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("Collection name must not be blank.")
    collection = find_collection(connection, cleaned)
    if collection is not None:
        return collection
    collection = PreferenceCollection(name=cleaned, connection_id=connection.id)
    db.session.add(collection)
    db.session.commit()
    get_logger(__name__).info(
        "Preference collection created",
        extra={"prefs_connection_id": connection.id, "prefs_collection": collection.key},
    )
    return collection


def _linked_preference_ids(collection: PreferenceCollection) -> set[int]:
    return set(
        db.session.scalars(
            select(PreferenceCollectionMembership.preference_id).where(
                PreferenceCollectionMembership.collection_id == collection.id
            )
        )
    )


def assign_preferences(collection: PreferenceCollection, preferences: Iterable[Preference]) -> int:
    """
    Link preferences to ``collection``.

    Preferences already linked or belonging to another connection are
    skipped. Returns the number of links created.
    """
    linked = _linked_preference_ids(collection)
    created = 0
    for preference in preferences:
        if preference.connection_id != collection.connection_id or preference.id in linked:
            continue
        db.session.add(
            PreferenceCollectionMembership(
                preference_id=preference.id,
                collection_id=collection.id,
                connection_id=preference.connection_id,
            )
        )
        linked.add(preference.id)
        created += 1
    db.session.commit()
    return created


def remove_preferences(collection: PreferenceCollection, preferences: Iterable[Preference]) -> int:
    """Unlink preferences from ``collection``; returns the number of links removed."""
    preference_ids = {preference.id for preference in preferences}
    if not preference_ids:
        return 0
    links = db.session.scalars(
        select(PreferenceCollectionMembership)
        .where(PreferenceCollectionMembership.collection_id == collection.id)
        .where(PreferenceCollectionMembership.preference_id.in_(preference_ids))
    ).all()
    for link in links:
        db.session.delete(link)
    db.session.commit()
    return len(links)


def member_count(collection: PreferenceCollection) -> int:
    return db.session.scalar(
        select(func.count(PreferenceCollectionMembership.id)).where(
            PreferenceCollectionMembership.collection_id == collection.id
        )
    )


def delete_collection(collection: PreferenceCollection, *, force: bool = False) -> None:
    count = member_count(collection)
    if count and not force:
        raise CollectionNotEmpty(collection, count)
    key = collection.key
    db.session.delete(collection)
    db.session.commit()
    get_logger(__name__).info(
        "Preference collection deleted",
        extra={"prefs_collection": key, "prefs_removed_links": count},
    )


def list_collections(connection: Connection) -> List[PreferenceCollection]:
    collections = db.session.scalars(
        select(PreferenceCollection).where(PreferenceCollection.connection_id == connection.id)
    ).all()
    return sorted(collections, key=lambda collection: locale_sort_key(collection.name))


def collection_preferences(collection: PreferenceCollection) -> List[Preference]:
    preferences = db.session.scalars(
        select(Preference)
        .join(PreferenceCollectionMembership, PreferenceCollectionMembership.preference_id == Preference.id)
        .where(PreferenceCollectionMembership.collection_id == collection.id)
    ).all()
    return sorted(preferences, key=lambda preference: locale_sort_key(preference.name))
