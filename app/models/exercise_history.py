from __future__ import annotations

from datetime import datetime
from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class ExerciseHistory(Base):
    """Denormalized per-(log, exercise) aggregate used for charts and PRs."""

    __tablename__ = "exercise_history"
    __table_args__ = (
        Index("ix_exercise_history_exercise_performed", "exercise_id", "performed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    log_id: Mapped[str] = mapped_column(
        ForeignKey("workout_logs.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    exercise_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    exercise_name: Mapped[str] = mapped_column(String(80), nullable=False)

    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    best_weight_g: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_volume_g: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_sets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_reps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_1rm_g: Mapped[int | None] = mapped_column(Integer, nullable=True)
