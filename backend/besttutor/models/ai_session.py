"""AI session telemetry model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from besttutor.database import Base, UUIDPrimaryKeyMixin


class AISession(UUIDPrimaryKeyMixin, Base):
    """One AI request made on behalf of a user, for analytics and plan gating."""

    __tablename__ = "ai_sessions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    session_type: Mapped[str] = mapped_column(String(50), nullable=False)  # tutor, quiz, learning_path, ...
    subject: Mapped[str | None] = mapped_column(String(100), nullable=True)
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(100), nullable=False)
    input_tokens: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    output_tokens: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    cost_usd: Mapped[float] = mapped_column(Numeric(10, 6), default=0, server_default="0")
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    success: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), index=True)

    def __repr__(self) -> str:
        return f"<AISession(id={self.id}, user_id={self.user_id}, type={self.session_type!r}, cost={self.cost_usd})>"
