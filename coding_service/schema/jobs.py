from __future__ import annotations

import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from coding_service.core.database import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class BackgroundJob(Base):
  __tablename__ = "background_jobs"
  __table_args__ = (Index("ix_background_jobs_queue_state_created", "queue_name", "state", "created_at"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  queue_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
  workspace_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
  data: Mapped[dict] = mapped_column(JSONType, nullable=False)
  state: Mapped[str] = mapped_column(String, nullable=False, default="waiting")
  progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  return_value: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
  failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
  processed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  finished_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
