"""Cooperative cancellation and progress mapping for batch coding jobs."""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable

from coding_service.jobs.models import BackgroundJobRecord
from coding_service.storage.jobs_repo import JobQueue

logger = logging.getLogger(__name__)

CancellationCheck = Callable[[], Awaitable[bool]]
ProgressCallback = Callable[[int], Awaitable[None]]

# Queue states that end a running job before its next chunk.
STOP_STATES = ("failed", "paused")


async def never_cancelled() -> bool:
  return False


def is_stop_requested(job: BackgroundJobRecord) -> bool:
  """True when the queue state or the payload flag asks processing to stop."""
  return job.is_paused or job.state in STOP_STATES


class QueueCancellationToken:
  """Polls the job queue for pause signals between pipeline stages.

  The payload `is_paused` flag and the queue-native `paused` state are both
  treated as cancellation. Lookup errors are logged and read as not cancelled.
  """

  def __init__(self, queue: JobQueue, job_id: str) -> None:
    self._queue = queue
    self._job_id = job_id

  async def __call__(self) -> bool:
    try:
      job = await self._queue.get_job(self._job_id)
    except Exception:  # noqa: BLE001
      logger.error("Error checking cancellation for job %s", self._job_id, exc_info=True)
      return False
    if job is None:
      return False
    return job.is_paused or job.state == "paused"


def overall_progress(*, chunk_start: int, chunk_size: int, total: int, chunk_progress: int) -> int:
  """Map progress within one chunk to overall job progress, capped at 99."""
  if total <= 0:
    return 0
  completed = chunk_start / total * 100
  current = chunk_progress / 100 * (chunk_size / total) * 100
  return min(math.floor(completed + current), 99)
