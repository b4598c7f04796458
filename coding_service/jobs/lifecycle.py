"""Pause/resume/cancel/restart/delete state machine over the job queue."""

from __future__ import annotations

import datetime
import logging

from coding_service.jobs.models import TEST_PERSON_CODING_QUEUE, BackgroundJobRecord, CodingStatistics, JobActionResult, JobState, JobStatus, JobStatusView
from coding_service.storage.jobs_repo import JobQueue

logger = logging.getLogger(__name__)

PAUSABLE_STATES: tuple[JobState, ...] = ("active", "waiting", "delayed")
CANCELLABLE_STATES: tuple[JobState, ...] = ("waiting", "delayed", "paused")

_STATE_TO_STATUS: dict[str, JobStatus] = {
  "active": "processing",
  "completed": "completed",
  "failed": "failed",
  "waiting": "pending",
  "delayed": "pending",
  "paused": "paused",
}


def map_job_state(state: str) -> JobStatus:
  """Surface a queue state as a job status; unknown states read as pending."""
  return _STATE_TO_STATUS.get(state, "pending")


def _as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
  if value is None:
    return None
  # SQLite hands back naive timestamps.
  return value if value.tzinfo is not None else value.replace(tzinfo=datetime.UTC)


def build_status_view(job: BackgroundJobRecord) -> JobStatusView:
  status = map_job_state(job.state)
  result = CodingStatistics.from_dict(job.return_value) if status == "completed" else None
  error = job.failure_reason if status == "failed" else None
  started = _as_utc(job.processed_at)
  finished = _as_utc(job.finished_at)
  duration_ms = int((finished - started).total_seconds() * 1000) if started and finished else None
  return JobStatusView(
    status=status,
    progress=job.progress,
    result=result,
    error=error,
    job_id=job.id,
    workspace_id=job.workspace_id,
    is_paused=job.is_paused,
    created_at=job.created_at,
    completed_at=job.finished_at,
    duration_ms=duration_ms,
    group_names=job.data.get("group_names"),
    auto_coder_run=job.data.get("auto_coder_run"),
  )


def _not_found(job_id: str) -> JobActionResult:
  return JobActionResult(success=False, message=f"Job with ID {job_id} not found", job_id=job_id)


class JobLifecycleManager:
  """Job control surface for background coding jobs.

  Every operation reports failure through JobActionResult instead of raising.
  """

  def __init__(self, queue: JobQueue, *, queue_name: str = TEST_PERSON_CODING_QUEUE) -> None:
    self._queue = queue
    self._queue_name = queue_name

  async def get_job_status(self, job_id: str) -> JobStatusView | JobActionResult:
    try:
      job = await self._queue.get_job(job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Error getting status for job %s", job_id, exc_info=True)
      return JobActionResult(success=False, message=f"Error getting job status: {exc}", job_id=job_id)
    if job is None:
      return _not_found(job_id)
    return build_status_view(job)

  async def list_jobs(self, workspace_id: int | None = None) -> list[JobStatusView]:
    """Return job views newest first; queue errors yield an empty list."""
    try:
      jobs = await self._queue.list_jobs(self._queue_name, workspace_id=workspace_id)
    except Exception:  # noqa: BLE001
      logger.error("Error listing jobs for workspace %s", workspace_id, exc_info=True)
      return []
    views = [build_status_view(job) for job in jobs]
    return sorted(views, key=lambda view: _as_utc(view.created_at) or datetime.datetime.min.replace(tzinfo=datetime.UTC), reverse=True)

  async def pause_job(self, job_id: str) -> JobActionResult:
    try:
      job = await self._queue.get_job(job_id)
      if job is None:
        return _not_found(job_id)
      if job.state not in PAUSABLE_STATES:
        return JobActionResult(success=False, message=f"Job with ID {job_id} cannot be paused because it is {job.state}", job_id=job_id)
      await self._queue.update_data(job_id, {**job.data, "is_paused": True})
    except Exception as exc:  # noqa: BLE001
      logger.error("Error pausing job %s", job_id, exc_info=True)
      return JobActionResult(success=False, message=f"Error pausing job: {exc}", job_id=job_id)
    logger.info("Job %s paused", job_id)
    return JobActionResult(success=True, message=f"Job {job_id} has been paused successfully", job_id=job_id)

  async def resume_job(self, job_id: str) -> JobActionResult:
    try:
      job = await self._queue.get_job(job_id)
      if job is None:
        return _not_found(job_id)
      if not job.is_paused:
        return JobActionResult(success=False, message=f"Job with ID {job_id} is not paused", job_id=job_id)
      await self._queue.update_data(job_id, {**job.data, "is_paused": False})
    except Exception as exc:  # noqa: BLE001
      logger.error("Error resuming job %s", job_id, exc_info=True)
      return JobActionResult(success=False, message=f"Error resuming job: {exc}", job_id=job_id)
    logger.info("Job %s resumed", job_id)
    return JobActionResult(success=True, message=f"Job {job_id} has been resumed successfully", job_id=job_id)

  async def cancel_job(self, job_id: str) -> JobActionResult:
    """Cancel a job that is not running; an active chunk cannot be interrupted from outside."""
    try:
      job = await self._queue.get_job(job_id)
      if job is None:
        return _not_found(job_id)
      if job.state not in CANCELLABLE_STATES:
        return JobActionResult(success=False, message=f"Job with ID {job_id} cannot be cancelled because it is {job.state}", job_id=job_id)
      cancelled = await self._queue.cancel(job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Error cancelling job %s", job_id, exc_info=True)
      return JobActionResult(success=False, message=f"Error cancelling job: {exc}", job_id=job_id)
    if not cancelled:
      return _not_found(job_id)
    logger.info("Job %s cancelled", job_id)
    return JobActionResult(success=True, message=f"Job {job_id} has been cancelled successfully", job_id=job_id)

  async def restart_job(self, job_id: str) -> JobActionResult:
    """Re-enqueue a failed job with the same payload and drop the old record."""
    try:
      job = await self._queue.get_job(job_id)
      if job is None:
        return _not_found(job_id)
      if job.state != "failed":
        return JobActionResult(success=False, message=f"Job with ID {job_id} cannot be restarted because it is {job.state}", job_id=job_id)
      payload = {
        "workspace_id": job.data.get("workspace_id"),
        "person_ids": list(job.data.get("person_ids") or []),
        "group_names": job.data.get("group_names"),
        "auto_coder_run": job.data.get("auto_coder_run", 1),
      }
      new_job = await self._queue.add(self._queue_name, payload, workspace_id=job.workspace_id)
      await self._queue.remove(job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Error restarting job %s", job_id, exc_info=True)
      return JobActionResult(success=False, message=f"Error restarting job: {exc}", job_id=job_id)
    logger.info("Job %s restarted as %s", job_id, new_job.id)
    return JobActionResult(success=True, message=f"Job {job_id} has been restarted as {new_job.id}", job_id=new_job.id)

  async def delete_job(self, job_id: str) -> JobActionResult:
    try:
      removed = await self._queue.remove(job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Error deleting job %s", job_id, exc_info=True)
      return JobActionResult(success=False, message=f"Error deleting job: {exc}", job_id=job_id)
    if not removed:
      return _not_found(job_id)
    logger.info("Job %s deleted", job_id)
    return JobActionResult(success=True, message=f"Job {job_id} has been deleted successfully", job_id=job_id)
