from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from polihub.db.base import Base


class TrustScoreEvent(Base):
    __tablename__ = "trust_score_events"
    __table_args__ = (UniqueConstraint("user_id", "cause", "cause_ref", name="uq_trust_event_cause"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    cause: Mapped[str] = mapped_column(String(40), index=True)
    cause_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    requested_delta: Mapped[int] = mapped_column(Integer)
    applied_delta: Mapped[int] = mapped_column(Integer)
    score_after: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_staff_id: Mapped[int | None] = mapped_column(ForeignKey("staff_users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
