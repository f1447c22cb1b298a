"""SQLAlchemy model for persisted notification markers."""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from notify_engine.core.database import Base


class NotificationKeyValue(Base):
  """One JSON blob per marker key (read ids, deleted ids, tracked state)."""

  __tablename__ = "notification_kv"

  key: Mapped[str] = mapped_column(String, primary_key=True)
  value: Mapped[str] = mapped_column(Text, nullable=False)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
