from __future__ import annotations

from datetime import datetime
from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base

RECOVERY_KEY = "recovery"


class CrashRecovery(Base):
    __tablename__ = "crash_recovery"

    # Single fixed key, last write wins
    id: Mapped[str] = mapped_column(String(20), primary_key=True, default=RECOVERY_KEY)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    saved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
