"""Shared fixtures: an in-memory SQLite database and an in-memory job queue."""

from __future__ import annotations

import datetime
from collections.abc import AsyncIterator, Sequence
from dataclasses import replace
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from coding_service.config import Settings
from coding_service.core.database import create_all_tables
from coding_service.jobs.models import BackgroundJobRecord, JobState
from coding_service.schema.sql import Booklet, Person, Response, Unit


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  return Settings(
    environment="test",
    debug=False,
    pg_dsn=None,
    pg_connect_timeout=5,
    log_dir="logs",
    log_max_bytes=1024,
    log_backup_count=1,
    scheme_cache_ttl_seconds=1800,
    test_file_cache_ttl_seconds=900,
    statistics_cache_ttl_seconds=3600,
    person_batch_size=2,
    update_batch_size=500,
    worker_poll_interval_seconds=0.01,
  )


@pytest.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
  engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool, connect_args={"check_same_thread": False})
  await create_all_tables(engine)
  yield engine
  await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
  return async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
  async with session_factory() as session:
    yield session


async def seed_person(
  session: AsyncSession,
  *,
  workspace_id: int = 1,
  login: str,
  code: str = "",
  group: str = "g1",
  booklet: str = "B1",
  unit_name: str = "UNIT1",
  unit_alias: str | None = None,
  consider: bool = True,
  responses: Sequence[dict[str, Any]] = (),
) -> tuple[Person, Unit, list[Response]]:
  """Insert a person with one booklet, one unit and the given responses."""
  person = Person(workspace_id=workspace_id, login=login, code=code, group=group, consider=consider)
  session.add(person)
  await session.flush()
  booklet_row = Booklet(person_id=person.id, name=booklet)
  session.add(booklet_row)
  await session.flush()
  unit = Unit(booklet_id=booklet_row.id, name=unit_name, alias=unit_alias)
  session.add(unit)
  await session.flush()
  rows = [Response(unit_id=unit.id, **{"status": 3, **response}) for response in responses]
  session.add_all(rows)
  await session.flush()
  return person, unit, rows


class InMemoryJobQueue:
  """Minimal in-memory job queue mirroring the Postgres queue behavior."""

  def __init__(self) -> None:
    self.jobs: dict[str, BackgroundJobRecord] = {}
    self.progress_history: dict[str, list[int]] = {}
    self._counter = 0

  async def add(self, queue_name: str, data: dict[str, Any], *, workspace_id: int | None = None) -> BackgroundJobRecord:
    self._counter += 1
    created_at = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC) + datetime.timedelta(seconds=self._counter)
    record = BackgroundJobRecord(id=f"job-{self._counter}", queue_name=queue_name, data=dict(data), state="waiting", progress=0, created_at=created_at, workspace_id=workspace_id)
    self.jobs[record.id] = record
    return record

  async def get_job(self, job_id: str) -> BackgroundJobRecord | None:
    return self.jobs.get(job_id)

  def _update(self, job_id: str, **changes: Any) -> BackgroundJobRecord | None:
    record = self.jobs.get(job_id)
    if record is None:
      return None
    # Merge updates onto the latest record to mimic persistence behavior.
    self.jobs[job_id] = replace(record, **changes)
    return self.jobs[job_id]

  async def update_data(self, job_id: str, data: dict[str, Any]) -> BackgroundJobRecord | None:
    return self._update(job_id, data=dict(data))

  async def set_progress(self, job_id: str, progress: int) -> None:
    if self._update(job_id, progress=progress) is not None:
      self.progress_history.setdefault(job_id, []).append(progress)

  async def set_state(self, job_id: str, state: JobState) -> BackgroundJobRecord | None:
    return self._update(job_id, state=state)

  async def claim_next(self, queue_name: str) -> BackgroundJobRecord | None:
    waiting = [job for job in self.jobs.values() if job.queue_name == queue_name and job.state == "waiting" and not job.is_paused]
    if not waiting:
      return None
    oldest = min(waiting, key=lambda job: job.created_at)
    return self._update(oldest.id, state="active", processed_at=oldest.created_at)

  async def complete(self, job_id: str, return_value: dict[str, Any]) -> None:
    record = self.jobs.get(job_id)
    finished = record.created_at + datetime.timedelta(seconds=3) if record else None
    self._update(job_id, state="completed", return_value=return_value, finished_at=finished)

  async def fail(self, job_id: str, reason: str) -> None:
    record = self.jobs.get(job_id)
    finished = record.created_at + datetime.timedelta(seconds=1) if record else None
    self._update(job_id, state="failed", failure_reason=reason, finished_at=finished)

  async def cancel(self, job_id: str) -> bool:
    return await self.remove(job_id)

  async def remove(self, job_id: str) -> bool:
    return self.jobs.pop(job_id, None) is not None

  async def list_jobs(self, queue_name: str, *, workspace_id: int | None = None) -> list[BackgroundJobRecord]:
    jobs = [job for job in self.jobs.values() if job.queue_name == queue_name and (workspace_id is None or job.workspace_id == workspace_id)]
    return sorted(jobs, key=lambda job: job.created_at, reverse=True)


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
  return InMemoryJobQueue()


@pytest.fixture
def seed(db_session: AsyncSession):
  async def _seed(**kwargs: Any) -> tuple[Person, Unit, list[Response]]:
    return await seed_person(db_session, **kwargs)

  return _seed
