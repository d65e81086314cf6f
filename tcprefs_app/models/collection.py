# tcprefs_app/models/collection.py

from __future__ import annotations

from sqlalchemy import ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db
from .preference import KEY_SEPARATOR


def collection_key(connection_id: str, name: str) -> str:
    return f"{connection_id}{KEY_SEPARATOR}{name.lower()}"


class PreferenceCollection(BaseModel):
    """User-defined named grouping of preferences within one connection."""

    __tablename__ = "tc_preference_collections"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(db.String(400), unique=True, nullable=False)
    connection_id: Mapped[str] = mapped_column(
        ForeignKey("tc_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)

    connection = relationship("Connection", back_populates="collections")
    memberships = relationship(
        "PreferenceCollectionMembership",
        back_populates="collection",
        cascade="all, delete-orphan",
    )

    def __init__(self, *, name: str, connection_id: str, **kwargs):
        super().__init__(name=name, connection_id=connection_id, key=collection_key(connection_id, name), **kwargs)

    def __repr__(self):
        return f"<PreferenceCollection {self.key}>"


class PreferenceCollectionMembership(BaseModel):
    """Join row linking a preference to a collection."""

    __tablename__ = "tc_preference_collection_members"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    preference_id: Mapped[int] = mapped_column(
        ForeignKey("tc_preferences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    collection_id: Mapped[int] = mapped_column(
        ForeignKey("tc_preference_collections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    connection_id: Mapped[str] = mapped_column(db.String(36), nullable=False, index=True)

    preference = relationship("Preference", back_populates="memberships")
    collection = relationship("PreferenceCollection", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint(
            "preference_id",
            "collection_id",
            name="uq_tc_preference_collection_member",
        ),
    )

    def __repr__(self):
        return f"<PreferenceCollectionMembership pref={self.preference_id} collection={self.collection_id}>"
