from __future__ import annotations

import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from coding_service.core.database import Base
from coding_service.schema.jobs import BackgroundJob  # noqa: F401


class Person(Base):
  __tablename__ = "persons"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  workspace_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
  group: Mapped[str] = mapped_column(String, nullable=False, default="")
  login: Mapped[str] = mapped_column(String, nullable=False)
  code: Mapped[str] = mapped_column(String, nullable=False, default="")
  consider: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  uploaded_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Booklet(Base):
  __tablename__ = "booklets"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  person_id: Mapped[int] = mapped_column(ForeignKey("persons.id", ondelete="CASCADE"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)


class Unit(Base):
  __tablename__ = "units"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  booklet_id: Mapped[int] = mapped_column(ForeignKey("booklets.id", ondelete="CASCADE"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False, index=True)
  alias: Mapped[str | None] = mapped_column(String, nullable=True)


class Response(Base):
  __tablename__ = "responses"
  __table_args__ = (Index("ix_responses_unit_variable", "unit_id", "variable_id"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  unit_id: Mapped[int] = mapped_column(ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
  variable_id: Mapped[str] = mapped_column(String, nullable=False)
  subform: Mapped[str | None] = mapped_column(String, nullable=True)
  value: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

  # Auto-coder run 1
  code_v1: Mapped[int | None] = mapped_column(Integer, nullable=True)
  score_v1: Mapped[int | None] = mapped_column(Integer, nullable=True)
  status_v1: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

  # Manual coding results
  code_v2: Mapped[int | None] = mapped_column(Integer, nullable=True)
  score_v2: Mapped[int | None] = mapped_column(Integer, nullable=True)
  status_v2: Mapped[int | None] = mapped_column(Integer, nullable=True)

  # Auto-coder run 2
  code_v3: Mapped[int | None] = mapped_column(Integer, nullable=True)
  score_v3: Mapped[int | None] = mapped_column(Integer, nullable=True)
  status_v3: Mapped[int | None] = mapped_column(Integer, nullable=True)


class FileUpload(Base):
  __tablename__ = "file_uploads"
  __table_args__ = (Index("ix_file_uploads_workspace_file", "workspace_id", "file_id"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  workspace_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
  file_id: Mapped[str] = mapped_column(String, nullable=False)
  filename: Mapped[str] = mapped_column(String, nullable=False)
  file_type: Mapped[str] = mapped_column(String, nullable=False)
  data: Mapped[str] = mapped_column(Text, nullable=False, default="")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class WorkspaceSetting(Base):
  __tablename__ = "workspace_settings"

  workspace_id: Mapped[int] = mapped_column(Integer, primary_key=True)
  key: Mapped[str] = mapped_column(String, primary_key=True)
  content: Mapped[str] = mapped_column(Text, nullable=False, default="")


class CodingJob(Base):
  __tablename__ = "coding_jobs"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  workspace_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
  variable_bundle_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
  case_ordering_mode: Mapped[str] = mapped_column(String, nullable=False, default="continuous")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CodingJobCoder(Base):
  __tablename__ = "coding_job_coders"

  coding_job_id: Mapped[int] = mapped_column(ForeignKey("coding_jobs.id", ondelete="CASCADE"), primary_key=True)
  user_id: Mapped[int] = mapped_column(Integer, primary_key=True)


class CodingJobVariable(Base):
  __tablename__ = "coding_job_variables"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  coding_job_id: Mapped[int] = mapped_column(ForeignKey("coding_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
  unit_name: Mapped[str] = mapped_column(String, nullable=False)
  variable_id: Mapped[str] = mapped_column(String, nullable=False)


class CodingJobUnit(Base):
  __tablename__ = "coding_job_units"
  __table_args__ = (Index("ix_coding_job_units_unit_variable", "unit_name", "variable_id"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  coding_job_id: Mapped[int] = mapped_column(ForeignKey("coding_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
  response_id: Mapped[int] = mapped_column(ForeignKey("responses.id", ondelete="CASCADE"), nullable=False, index=True)
  unit_name: Mapped[str] = mapped_column(String, nullable=False)
  unit_alias: Mapped[str | None] = mapped_column(String, nullable=True)
  variable_id: Mapped[str] = mapped_column(String, nullable=False)
  booklet_name: Mapped[str] = mapped_column(String, nullable=False, default="")
  person_login: Mapped[str] = mapped_column(String, nullable=False, default="")
  person_code: Mapped[str] = mapped_column(String, nullable=False, default="")
  person_group: Mapped[str] = mapped_column(String, nullable=False, default="")
  code: Mapped[int | None] = mapped_column(Integer, nullable=True)
  score: Mapped[int | None] = mapped_column(Integer, nullable=True)
  is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  notes: Mapped[str | None] = mapped_column(Text, nullable=True)
  coding_issue_option: Mapped[int | None] = mapped_column(Integer, nullable=True)
