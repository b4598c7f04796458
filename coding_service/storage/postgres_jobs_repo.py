"""Postgres-backed background job queue using SQLAlchemy."""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coding_service.core.database import require_session_factory
from coding_service.jobs.models import BackgroundJobRecord, JobState
from coding_service.schema.jobs import BackgroundJob
from coding_service.storage.jobs_repo import JobQueue
from coding_service.utils.ids import generate_job_id


def _now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class PostgresJobQueue(JobQueue):
  """Persist queued jobs to the background_jobs table."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or require_session_factory()

  async def add(self, queue_name: str, data: dict[str, Any], *, workspace_id: int | None = None) -> BackgroundJobRecord:
    async with self._session_factory() as session:
      row = BackgroundJob(id=generate_job_id(), queue_name=queue_name, workspace_id=workspace_id, data=dict(data), state="waiting", progress=0, created_at=_now())
      session.add(row)
      await session.commit()
      return self._model_to_record(row)

  async def get_job(self, job_id: str) -> BackgroundJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(BackgroundJob, job_id)
      return self._model_to_record(row) if row is not None else None

  async def update_data(self, job_id: str, data: dict[str, Any]) -> BackgroundJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(BackgroundJob, job_id)
      if row is None:
        return None
      # Assign a fresh dict so the JSON column is flagged dirty.
      row.data = dict(data)
      await session.commit()
      return self._model_to_record(row)

  async def set_progress(self, job_id: str, progress: int) -> None:
    async with self._session_factory() as session:
      row = await session.get(BackgroundJob, job_id)
      if row is None:
        return
      row.progress = max(0, min(int(progress), 100))
      await session.commit()

  async def set_state(self, job_id: str, state: JobState) -> BackgroundJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(BackgroundJob, job_id)
      if row is None:
        return None
      row.state = state
      await session.commit()
      return self._model_to_record(row)

  async def claim_next(self, queue_name: str) -> BackgroundJobRecord | None:
    async with self._session_factory() as session:
      stmt = select(BackgroundJob).where(BackgroundJob.queue_name == queue_name, BackgroundJob.state == "waiting").order_by(BackgroundJob.created_at.asc()).with_for_update(skip_locked=True)
      for row in (await session.execute(stmt)).scalars():
        # Jobs flagged as paused stay queued until resumed.
        if (row.data or {}).get("is_paused"):
          continue
        row.state = "active"
        row.processed_at = _now()
        await session.commit()
        return self._model_to_record(row)
      return None

  async def complete(self, job_id: str, return_value: dict[str, Any]) -> None:
    await self._finish(job_id, state="completed", return_value=return_value, failure_reason=None)

  async def fail(self, job_id: str, reason: str) -> None:
    await self._finish(job_id, state="failed", return_value=None, failure_reason=reason)

  async def cancel(self, job_id: str) -> bool:
    return await self.remove(job_id)

  async def remove(self, job_id: str) -> bool:
    async with self._session_factory() as session:
      result = await session.execute(delete(BackgroundJob).where(BackgroundJob.id == job_id))
      await session.commit()
      return bool(result.rowcount)

  async def list_jobs(self, queue_name: str, *, workspace_id: int | None = None) -> list[BackgroundJobRecord]:
    async with self._session_factory() as session:
      stmt = select(BackgroundJob).where(BackgroundJob.queue_name == queue_name)
      if workspace_id is not None:
        stmt = stmt.where(BackgroundJob.workspace_id == workspace_id)
      stmt = stmt.order_by(BackgroundJob.created_at.desc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def _finish(self, job_id: str, *, state: JobState, return_value: dict[str, Any] | None, failure_reason: str | None) -> None:
    async with self._session_factory() as session:
      row = await session.get(BackgroundJob, job_id)
      if row is None:
        return
      row.state = state
      row.return_value = return_value
      row.failure_reason = failure_reason
      row.finished_at = _now()
      await session.commit()

  def _model_to_record(self, row: BackgroundJob) -> BackgroundJobRecord:
    return BackgroundJobRecord(
      id=row.id,
      queue_name=row.queue_name,
      workspace_id=row.workspace_id,
      data=dict(row.data or {}),
      state=row.state,  # type: ignore[arg-type]
      progress=int(row.progress or 0),
      return_value=row.return_value,
      failure_reason=row.failure_reason,
      created_at=row.created_at,
      processed_at=row.processed_at,
      finished_at=row.finished_at,
    )
