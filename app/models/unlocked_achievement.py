from __future__ import annotations

from datetime import datetime
from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class UnlockedAchievement(Base):
    __tablename__ = "unlocked_achievements"

    # One row per catalog id; achievements are never re-unlocked or revoked
    achievement_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    context: Mapped[str | None] = mapped_column(String(255), nullable=True)
