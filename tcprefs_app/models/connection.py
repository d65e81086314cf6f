# tcprefs_app/models/connection.py

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


def _new_connection_id() -> str:
    return str(uuid.uuid4())


class Connection(BaseModel):
    """
    A named Teamcenter server the preferences are mirrored from.

    ``last_import_started_at``/``last_import_completed_at`` delimit the most
    recent reconciliation run window and drive status classification.

    Credentials are stored in cleartext; see DESIGN.md.
    """

    __tablename__ = "tc_connections"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=_new_connection_id)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False, default="")
    url: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    description: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    username: Mapped[str] = mapped_column(db.String(200), nullable=False, default="")
    password: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")

    last_import_started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_import_completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    preferences = relationship(
        "Preference",
        back_populates="connection",
        cascade="all, delete-orphan",
    )
    collections = relationship(
        "PreferenceCollection",
        back_populates="connection",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Connection {self.name or self.url} id={self.id}>"

    @property
    def title(self) -> str:
        """Display name, falling back to the URL for unnamed connections."""
        return self.name or self.url
