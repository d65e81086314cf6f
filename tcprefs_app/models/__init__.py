# tcprefs_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, as_utc, db, utcnow
from .collection import PreferenceCollection, PreferenceCollectionMembership, collection_key
from .connection import Connection
from .preference import (
    KEY_SEPARATOR,
    Preference,
    PreferenceRevision,
    PreferenceType,
    preference_key,
    preference_type_label,
)

__all__ = [
    "db",
    "BaseModel",
    "as_utc",
    "utcnow",
    "Connection",
    "Preference",
    "PreferenceRevision",
    "PreferenceType",
    "PreferenceCollection",
    "PreferenceCollectionMembership",
    "KEY_SEPARATOR",
    "collection_key",
    "preference_key",
    "preference_type_label",
]
