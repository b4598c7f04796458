"""Materialization of allocation plans into coding jobs, and coder-facing job operations."""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coding_service.core.database import session_transaction
from coding_service.core.exceptions import CodingJobNotFoundError, CodingJobUnitNotFoundError
from coding_service.schema.coding_jobs import CodingJobProgress, CodingJobStatus, CodingProgressEntry, PersonKey
from coding_service.schema.distribution import Coder, CreatedCodingJob, DistributionJobsResult, DistributionPlan, DistributionRequest, ItemAllocation
from coding_service.schema.sql import CodingJob, CodingJobCoder, CodingJobUnit, CodingJobVariable
from coding_service.services.coding_statistics import invalidate_incomplete_variables
from coding_service.services.distribution import calculate_distribution
from coding_service.storage.cache import CacheStore
from coding_service.utils.ids import generate_coding_job_name

logger = logging.getLogger(__name__)


async def _create_job_for_coder(session: AsyncSession, workspace_id: int, request: DistributionRequest, allocation: ItemAllocation, coder: Coder) -> CreatedCodingJob:
  responses = allocation.assignments[coder.id]
  item_name, variable_id = allocation.item.name_parts
  job_name = generate_coding_job_name(coder.name, item_name, variable_id, len(responses))
  job = CodingJob(workspace_id=workspace_id, name=job_name, status="pending", case_ordering_mode=request.case_ordering_mode, variable_bundle_id=allocation.item.bundle_id)
  session.add(job)
  await session.flush()

  session.add(CodingJobCoder(coding_job_id=job.id, user_id=coder.id))
  session.add_all([CodingJobVariable(coding_job_id=job.id, unit_name=variable.unit_name, variable_id=variable.variable_id) for variable in dict.fromkeys(allocation.item.variables)])
  await session.execute(
    insert(CodingJobUnit),
    [
      {
        "coding_job_id": job.id,
        "response_id": response.id,
        "unit_name": response.unit_name,
        "unit_alias": response.unit_alias,
        "variable_id": response.variable_id,
        "booklet_name": response.booklet_name,
        "person_login": response.person_login,
        "person_code": response.person_code,
        "person_group": response.person_group,
        "is_open": True,
      }
      for response in responses
    ],
  )
  return CreatedCodingJob(coder_id=coder.id, coder_name=coder.name, item_key=allocation.item.key, job_id=job.id, job_name=job_name, case_count=len(responses))


async def materialize_plan(session: AsyncSession, workspace_id: int, request: DistributionRequest, plan: DistributionPlan) -> list[CreatedCodingJob]:
  """Persist one job per (item, coder) with a non-zero share; caller owns the transaction."""
  created: list[CreatedCodingJob] = []
  coders = request.sorted_coders()
  for allocation in plan.items:
    for coder in coders:
      if not allocation.assignments.get(coder.id):
        continue
      created.append(await _create_job_for_coder(session, workspace_id, request, allocation, coder))
  return created


async def create_distributed_coding_jobs(session: AsyncSession, workspace_id: int, request: DistributionRequest, *, cache: CacheStore | None = None) -> DistributionJobsResult:
  """Allocate and persist coding jobs in a single transaction.

  Any failure rolls back every job of the request and propagates.
  """
  logger.info("Creating distributed coding jobs for workspace %s", workspace_id)
  try:
    async with session_transaction(session):
      plan = await calculate_distribution(session, workspace_id, request)
      jobs = await materialize_plan(session, workspace_id, request, plan)
  except Exception:
    logger.error("Error creating distributed coding jobs for workspace %s", workspace_id, exc_info=True)
    raise

  if cache is not None:
    await invalidate_incomplete_variables(cache, workspace_id)
  logger.info("Created %s distributed coding jobs for workspace %s", len(jobs), workspace_id)
  return DistributionJobsResult(plan=plan, jobs=jobs)


async def _require_job(session: AsyncSession, coding_job_id: int) -> CodingJob:
  job = await session.get(CodingJob, coding_job_id)
  if job is None:
    raise CodingJobNotFoundError(coding_job_id)
  return job


async def get_coding_job_progress(session: AsyncSession, coding_job_id: int) -> CodingJobProgress:
  stmt = select(
    func.count(CodingJobUnit.id),
    func.count(CodingJobUnit.id).filter(CodingJobUnit.code.is_not(None), CodingJobUnit.code >= 0),
    func.count(CodingJobUnit.id).filter(CodingJobUnit.is_open.is_(True)),
  ).where(CodingJobUnit.coding_job_id == coding_job_id)
  total, coded, open_units = (await session.execute(stmt)).one()
  total = int(total or 0)
  if total == 0:
    return CodingJobProgress(progress=0, coded=0, total=0, open=0)
  coded = int(coded or 0)
  return CodingJobProgress(progress=round(coded / total * 100), coded=coded, total=total, open=int(open_units or 0))


async def check_coding_job_completion(session: AsyncSession, coding_job_id: int) -> CodingJobStatus | None:
  """Move a fully coded job to `completed`, or `open` while units are still flagged open."""
  progress = await get_coding_job_progress(session, coding_job_id)
  if progress.total == 0 or progress.progress != 100:
    return None
  status: CodingJobStatus = "open" if progress.open > 0 else "completed"
  await session.execute(update(CodingJob).where(CodingJob.id == coding_job_id).values(status=status))
  return status


async def save_coding_progress(session: AsyncSession, coding_job_id: int, entry: CodingProgressEntry) -> CodingJob:
  """Store one coder decision and re-run the completion check."""
  async with session_transaction(session):
    job = await _require_job(session, coding_job_id)
    person = PersonKey.parse(entry.test_person)
    filters = [
      CodingJobUnit.coding_job_id == coding_job_id,
      CodingJobUnit.unit_name == entry.unit_id,
      CodingJobUnit.variable_id == entry.variable_id,
      CodingJobUnit.person_login == person.login,
      CodingJobUnit.person_code == person.code,
      CodingJobUnit.booklet_name == person.booklet,
    ]
    if person.group is not None:
      filters.append(CodingJobUnit.person_group == person.group)
    unit = (await session.execute(select(CodingJobUnit).where(*filters).limit(1))).scalar_one_or_none()
    if unit is None:
      raise CodingJobUnitNotFoundError("Coding job unit not found for progress entry")

    if entry.is_open is not None:
      unit.is_open = entry.is_open
      if entry.is_open:
        unit.code = None
        unit.score = None
        unit.coding_issue_option = None
    elif entry.selected_code is not None:
      unit.code = entry.selected_code.id
      unit.is_open = False
      if entry.selected_code.score is not None:
        unit.score = entry.selected_code.score
      unit.coding_issue_option = entry.selected_code.coding_issue_option
    if entry.notes is not None:
      unit.notes = entry.notes or None
    await session.flush()

    await check_coding_job_completion(session, coding_job_id)
  return job


async def update_coding_job_status(session: AsyncSession, coding_job_id: int, status: CodingJobStatus) -> CodingJob:
  async with session_transaction(session):
    job = await _require_job(session, coding_job_id)
    job.status = status
  logger.info("Coding job %s set to %s", coding_job_id, status)
  return job


async def delete_coding_job(session: AsyncSession, coding_job_id: int, *, cache: CacheStore | None = None) -> None:
  """Delete a coding job together with its units, coders and variables."""
  async with session_transaction(session):
    job = await _require_job(session, coding_job_id)
    workspace_id = job.workspace_id
    await session.execute(delete(CodingJobUnit).where(CodingJobUnit.coding_job_id == coding_job_id))
    await session.execute(delete(CodingJobCoder).where(CodingJobCoder.coding_job_id == coding_job_id))
    await session.execute(delete(CodingJobVariable).where(CodingJobVariable.coding_job_id == coding_job_id))
    await session.delete(job)
  if cache is not None:
    await invalidate_incomplete_variables(cache, workspace_id)
