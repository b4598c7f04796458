"""Storage interfaces for the background job queue."""

from __future__ import annotations

from typing import Any, Protocol

from coding_service.jobs.models import BackgroundJobRecord, JobState


class JobQueue(Protocol):
  """Queue contract for background coding jobs."""

  async def add(self, queue_name: str, data: dict[str, Any], *, workspace_id: int | None = None) -> BackgroundJobRecord:
    """Enqueue a new waiting job."""

  async def get_job(self, job_id: str) -> BackgroundJobRecord | None:
    """Fetch a job by identifier."""

  async def update_data(self, job_id: str, data: dict[str, Any]) -> BackgroundJobRecord | None:
    """Replace the job payload."""

  async def set_progress(self, job_id: str, progress: int) -> None:
    """Record progress in percent."""

  async def set_state(self, job_id: str, state: JobState) -> BackgroundJobRecord | None:
    """Move a job to another queue state."""

  async def claim_next(self, queue_name: str) -> BackgroundJobRecord | None:
    """Mark the oldest claimable waiting job active and return it."""

  async def complete(self, job_id: str, return_value: dict[str, Any]) -> None:
    """Finish a job successfully."""

  async def fail(self, job_id: str, reason: str) -> None:
    """Finish a job with a failure reason."""

  async def cancel(self, job_id: str) -> bool:
    """Withdraw a job that has not started; returns False if it is unknown."""

  async def remove(self, job_id: str) -> bool:
    """Delete a job record; returns False if it is unknown."""

  async def list_jobs(self, queue_name: str, *, workspace_id: int | None = None) -> list[BackgroundJobRecord]:
    """Return jobs newest first."""
