"""Workspace coding statistics and incomplete-variable listings with caching."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coding_service.config import get_settings
from coding_service.jobs.models import CodingStatistics
from coding_service.schema.coding_jobs import IncompleteVariable
from coding_service.schema.sql import Booklet, Person, Response, Unit
from coding_service.services.response_status import ResponseStatus, status_to_name
from coding_service.storage.cache import CacheStore, coding_statistics_key, incomplete_variables_key

logger = logging.getLogger(__name__)


def _ttl(ttl_seconds: int | None) -> int:
  return ttl_seconds if ttl_seconds is not None else get_settings().statistics_cache_ttl_seconds


async def compute_coding_statistics(session: AsyncSession, workspace_id: int) -> CodingStatistics:
  """Count first-run coding statuses of the workspace's considered responses."""
  stmt = (
    select(Response.status_v1, func.count(Response.id))
    .join(Unit, Response.unit_id == Unit.id)
    .join(Booklet, Unit.booklet_id == Booklet.id)
    .join(Person, Booklet.person_id == Person.id)
    .where(Person.workspace_id == workspace_id, Person.consider.is_(True))
    .group_by(Response.status_v1)
  )
  statistics = CodingStatistics()
  for status_value, count in (await session.execute(stmt)).all():
    name = status_to_name(status_value) or ResponseStatus.UNSET.name
    statistics.total_responses += int(count)
    statistics.status_counts[name] = statistics.status_counts.get(name, 0) + int(count)
  return statistics


async def get_coding_statistics(session: AsyncSession, workspace_id: int, cache: CacheStore, *, ttl_seconds: int | None = None) -> CodingStatistics:
  cached = await cache.get(coding_statistics_key(workspace_id))
  if cached is not None:
    return CodingStatistics.from_dict(cached)
  return await refresh_statistics(session, workspace_id, cache, ttl_seconds=ttl_seconds)


async def refresh_statistics(session: AsyncSession, workspace_id: int, cache: CacheStore, *, ttl_seconds: int | None = None) -> CodingStatistics:
  """Recompute statistics and overwrite the cached entry."""
  statistics = await compute_coding_statistics(session, workspace_id)
  await cache.set(coding_statistics_key(workspace_id), statistics.to_dict(), _ttl(ttl_seconds))
  logger.debug("Refreshed coding statistics for workspace %s (%s responses)", workspace_id, statistics.total_responses)
  return statistics


async def get_incomplete_variables(session: AsyncSession, workspace_id: int, cache: CacheStore, *, ttl_seconds: int | None = None) -> list[IncompleteVariable]:
  """List unit variables that still have CODING_INCOMPLETE responses."""
  key = incomplete_variables_key(workspace_id)
  cached = await cache.get(key)
  if cached is not None:
    return [IncompleteVariable(**entry) for entry in cached]

  stmt = (
    select(Unit.name, Response.variable_id, func.count(Response.id))
    .join(Unit, Response.unit_id == Unit.id)
    .join(Booklet, Unit.booklet_id == Booklet.id)
    .join(Person, Booklet.person_id == Person.id)
    .where(Person.workspace_id == workspace_id, Person.consider.is_(True), Response.status_v1 == int(ResponseStatus.CODING_INCOMPLETE))
    .group_by(Unit.name, Response.variable_id)
    .order_by(Unit.name.asc(), Response.variable_id.asc())
  )
  variables = [IncompleteVariable(unit_name=row[0], variable_id=row[1], response_count=int(row[2])) for row in (await session.execute(stmt)).all()]
  await cache.set(key, [{"unit_name": item.unit_name, "variable_id": item.variable_id, "response_count": item.response_count} for item in variables], _ttl(ttl_seconds))
  return variables


async def invalidate_incomplete_variables(cache: CacheStore, workspace_id: int) -> None:
  await cache.delete(incomplete_variables_key(workspace_id))
