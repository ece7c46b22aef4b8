from datetime import datetime

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from polihub.db.base import Base


class GlobalLogoutMarker(Base):
    __tablename__ = "global_logout_marker"

    id: Mapped[int] = mapped_column(primary_key=True)
    version: Mapped[int] = mapped_column(Integer, default=0)
    invalidated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    actor_staff_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
