from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from polihub.db.base import Base


class ModerationFlag(Base):
    __tablename__ = "moderation_flags"

    id: Mapped[int] = mapped_column(primary_key=True)
    post_id: Mapped[int | None] = mapped_column(ForeignKey("posts.id"), nullable=True, index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    source: Mapped[str] = mapped_column(String(20), index=True)
    reason: Mapped[str] = mapped_column(String(64))
    reasons: Mapped[list | None] = mapped_column(JSON, nullable=True)
    severity: Mapped[int] = mapped_column(Integer, default=0)
    content_excerpt: Mapped[str | None] = mapped_column(String(280), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    trust_delta: Mapped[int] = mapped_column(Integer, default=0)
    flagged_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    resolved_by_staff_id: Mapped[int | None] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
