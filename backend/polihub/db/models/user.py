from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from polihub.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    nickname: Mapped[str] = mapped_column(String(50), default="Anonymous")
    emoji: Mapped[str] = mapped_column(String(10), default="🧑")
    county: Mapped[str | None] = mapped_column(String(50), nullable=True)
    trust_score: Mapped[int] = mapped_column(Integer, default=0)
    standing: Mapped[str] = mapped_column(String(20), default="normal", index=True)
    violation_count: Mapped[int] = mapped_column(Integer, default=0)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
