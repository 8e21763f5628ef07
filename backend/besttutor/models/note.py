"""Cornell note model."""

import uuid
from typing import Any

from sqlalchemy import JSON, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from besttutor.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class CornellNote(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A Cornell-style note: cue questions, note body, and summary."""

    __tablename__ = "cornell_notes"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    cue_column: Mapped[list[Any]] = mapped_column(JSON, default=list)
    note_body: Mapped[str] = mapped_column(Text, default="")
    summary: Mapped[str] = mapped_column(Text, default="")
    tags: Mapped[list[Any]] = mapped_column(JSON, default=list)

    def __repr__(self) -> str:
        return f"<CornellNote(id={self.id}, topic={self.topic!r})>"
