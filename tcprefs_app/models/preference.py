# tcprefs_app/models/preference.py

"""
Mirrored Teamcenter preferences and their append-only revision history.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db

KEY_SEPARATOR = "|"


class PreferenceType(int, enum.Enum):
    """Teamcenter preference value types as reported by the server."""

    STRING = 0
    LOGICAL = 1
    INTEGER = 2
    DOUBLE = 3


def preference_type_label(type_code: int) -> str:
    """Return the export label for a type code (``Code N`` for unknown codes)."""
    labels = {
        PreferenceType.STRING: "String",
        PreferenceType.LOGICAL: "Logical",
        PreferenceType.INTEGER: "Integer",
        PreferenceType.DOUBLE: "Double",
    }
    try:
        return labels[PreferenceType(type_code)]
    except ValueError:
        return f"Code {type_code}"


def preference_key(connection_id: str, name: str) -> str:
    return f"{connection_id}{KEY_SEPARATOR}{name}"


class Preference(BaseModel):
    """Current snapshot of one preference on one connection."""

    __tablename__ = "tc_preferences"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(db.String(600), unique=True, nullable=False)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey("tc_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Definition
    name: Mapped[str] = mapped_column(db.String(500), nullable=False, index=True)
    category: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    type_code: Mapped[int] = mapped_column("type", db.Integer, nullable=False, default=PreferenceType.STRING.value)
    is_array: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_disabled: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    protection_scope: Mapped[str] = mapped_column(db.String(100), nullable=False, default="")
    is_env_enabled: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_ootb_preference: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    # Values
    value_origination: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    values: Mapped[list | None] = mapped_column(db.JSON, nullable=True)

    # User note, never written by the importer
    comment: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    first_seen_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False)
    last_imported_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, index=True)
    last_changed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    fingerprint: Mapped[str | None] = mapped_column(db.String(32), nullable=True)

    connection = relationship("Connection", back_populates="preferences")
    revisions = relationship(
        "PreferenceRevision",
        back_populates="preference",
        cascade="all, delete-orphan",
        order_by="PreferenceRevision.captured_at.desc()",
    )
    memberships = relationship(
        "PreferenceCollectionMembership",
        back_populates="preference",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_tc_preferences_connection_name", "connection_id", "name"),)

    def __repr__(self):
        return f"<Preference {self.key}>"

    @property
    def type_label(self) -> str:
        return preference_type_label(self.type_code)

    @property
    def value_list(self) -> list[str]:
        return list(self.values or [])


class PreferenceRevision(BaseModel):
    """Immutable copy of a preference's definition and values at capture time."""

    __tablename__ = "tc_preference_revisions"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    preference_id: Mapped[int | None] = mapped_column(
        ForeignKey("tc_preferences.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    captured_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False)

    name: Mapped[str] = mapped_column(db.String(500), nullable=False)
    category: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    type_code: Mapped[int] = mapped_column("type", db.Integer, nullable=False)
    is_array: Mapped[bool] = mapped_column(db.Boolean, nullable=False)
    is_disabled: Mapped[bool] = mapped_column(db.Boolean, nullable=False)
    protection_scope: Mapped[str] = mapped_column(db.String(100), nullable=False, default="")
    is_env_enabled: Mapped[bool] = mapped_column(db.Boolean, nullable=False)
    is_ootb_preference: Mapped[bool] = mapped_column(db.Boolean, nullable=False)
    value_origination: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    values: Mapped[list | None] = mapped_column(db.JSON, nullable=True)

    fingerprint: Mapped[str] = mapped_column(db.String(32), nullable=False)

    preference = relationship("Preference", back_populates="revisions")

    def __repr__(self):
        return f"<PreferenceRevision {self.name} captured_at={self.captured_at}>"

    @classmethod
    def capture(cls, preference: Preference, captured_at: datetime) -> "PreferenceRevision":
        """Build a revision from the preference's current (post-update) state."""
        return cls(
            preference=preference,
            captured_at=captured_at,
            name=preference.name,
            category=preference.category,
            description=preference.description,
            type_code=preference.type_code,
            is_array=preference.is_array,
            is_disabled=preference.is_disabled,
            protection_scope=preference.protection_scope,
            is_env_enabled=preference.is_env_enabled,
            is_ootb_preference=preference.is_ootb_preference,
            value_origination=preference.value_origination,
            values=list(preference.values) if preference.values is not None else None,
            fingerprint=preference.fingerprint or "",
        )
