"""Background processor for queued test-person coding jobs."""

from __future__ import annotations

import asyncio
import logging

from coding_service.config import Settings
from coding_service.jobs.models import TEST_PERSON_CODING_QUEUE, BackgroundJobRecord, CodingStatistics
from coding_service.jobs.progress import QueueCancellationToken, is_stop_requested, overall_progress
from coding_service.services.coding_pipeline import BatchCodingPipeline
from coding_service.storage.jobs_repo import JobQueue

logger = logging.getLogger(__name__)


class TestPersonCodingWorker:
  """Claims coding jobs and runs the pipeline chunk by chunk."""

  __test__ = False

  def __init__(self, *, queue: JobQueue, pipeline: BatchCodingPipeline, settings: Settings, queue_name: str = TEST_PERSON_CODING_QUEUE) -> None:
    self._queue = queue
    self._pipeline = pipeline
    self._batch_size = settings.person_batch_size
    self._poll_interval = settings.worker_poll_interval_seconds
    self._queue_name = queue_name

  async def _should_stop(self, job_id: str, label: str) -> bool:
    current = await self._queue.get_job(job_id)
    if current is None:
      logger.info("Job %s disappeared %s", job_id, label)
      return True
    if not is_stop_requested(current):
      return False
    logger.info("Job %s was %s %s", job_id, "paused" if current.is_paused else current.state, label)
    # A flagged job goes back to waiting so resuming makes it claimable again.
    if current.is_paused and current.state == "active":
      await self._queue.set_state(job_id, "waiting")
    return True

  async def process_job(self, job: BackgroundJobRecord) -> CodingStatistics | None:
    """Run every chunk of a claimed job and finish it; returns None on failure."""
    workspace_id = int(job.data["workspace_id"])
    person_ids = [int(person_id) for person_id in job.data.get("person_ids") or []]
    auto_coder_run = int(job.data.get("auto_coder_run") or 1)
    total = len(person_ids)
    combined = CodingStatistics()
    logger.info("Processing test person coding job %s for workspace %s (%s persons)", job.id, workspace_id, total)

    try:
      await self._queue.set_progress(job.id, 0)
      total_batches = -(-total // self._batch_size)
      for start in range(0, total, self._batch_size):
        batch_number = start // self._batch_size + 1
        if await self._should_stop(job.id, f"before processing batch {batch_number}"):
          return combined
        chunk = person_ids[start : start + self._batch_size]
        logger.info("Processing batch %s of %s (%s persons)", batch_number, total_batches, len(chunk))

        async def report(value: int, *, chunk_start: int = start, chunk_size: int = len(chunk)) -> None:
          await self._queue.set_progress(job.id, overall_progress(chunk_start=chunk_start, chunk_size=chunk_size, total=total, chunk_progress=value))

        result = await self._pipeline.process_test_persons_batch(
          workspace_id, chunk, auto_coder_run=auto_coder_run, progress=report, is_cancelled=QueueCancellationToken(self._queue, job.id), job_id=job.id
        )
        combined.merge(result)

      if await self._should_stop(job.id, "before completion"):
        return combined
      await self._queue.set_progress(job.id, 100)
      await self._queue.complete(job.id, combined.to_dict())
    except Exception as exc:  # noqa: BLE001
      logger.error("Error processing job %s", job.id, exc_info=True)
      await self._queue.fail(job.id, str(exc))
      return None

    logger.info("Job %s completed: %s responses coded", job.id, combined.total_responses)
    return combined

  async def run_once(self) -> str | None:
    """Process the oldest claimable job; returns its id or None when idle."""
    job = await self._queue.claim_next(self._queue_name)
    if job is None:
      return None
    await self.process_job(job)
    return job.id

  async def drain(self) -> int:
    """Process jobs until none is waiting."""
    processed = 0
    while await self.run_once() is not None:
      processed += 1
    return processed

  async def run_forever(self, *, stop: asyncio.Event | None = None, poll_interval: float | None = None) -> None:
    interval = poll_interval if poll_interval is not None else self._poll_interval
    while stop is None or not stop.is_set():
      if await self.run_once() is None:
        await asyncio.sleep(interval)
