from __future__ import annotations

from datetime import datetime
from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class WorkoutLog(Base):
    __tablename__ = "workout_logs"
    __table_args__ = (
        Index("ix_workout_logs_template_started", "template_id", "started_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="completed",
        index=True,
    )

    # Template may be archived or removed later; the snapshot below is what was used
    template_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("workout_templates.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    template_name: Mapped[str] = mapped_column(String(100), nullable=False)

    template_snapshot: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    performed_sets: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    duration_sec: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_volume_g: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
