from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from coding_service.jobs.lifecycle import JobLifecycleManager
from coding_service.jobs.models import TEST_PERSON_CODING_QUEUE, CodingStatistics
from coding_service.jobs.progress import QueueCancellationToken, overall_progress
from coding_service.jobs.worker import TestPersonCodingWorker

PAYLOAD = {"workspace_id": 1, "person_ids": [1, 2, 3, 4, 5], "group_names": None, "auto_coder_run": 2}


def _pipeline(side_effect=None) -> AsyncMock:
  pipeline = AsyncMock()
  if side_effect is None:

    async def side_effect(workspace_id, person_ids, **kwargs):
      await kwargs["progress"](50)
      return CodingStatistics(total_responses=len(person_ids), status_counts={"CODING_COMPLETE": len(person_ids)})

  pipeline.process_test_persons_batch.side_effect = side_effect
  return pipeline


def test_overall_progress_maps_chunks_and_caps() -> None:
  assert overall_progress(chunk_start=0, chunk_size=2, total=5, chunk_progress=50) == 20
  assert overall_progress(chunk_start=4, chunk_size=1, total=5, chunk_progress=100) == 99
  assert overall_progress(chunk_start=0, chunk_size=0, total=0, chunk_progress=100) == 0


@pytest.mark.anyio
async def test_worker_processes_chunks_and_completes(job_queue, settings) -> None:
  job = await job_queue.add(TEST_PERSON_CODING_QUEUE, PAYLOAD, workspace_id=1)
  pipeline = _pipeline()
  worker = TestPersonCodingWorker(queue=job_queue, pipeline=pipeline, settings=settings)

  assert await worker.drain() == 1

  chunks = [call.args[1] for call in pipeline.process_test_persons_batch.await_args_list]
  assert chunks == [[1, 2], [3, 4], [5]]
  assert all(call.kwargs["auto_coder_run"] == 2 for call in pipeline.process_test_persons_batch.await_args_list)
  stored = job_queue.jobs[job.id]
  assert stored.state == "completed"
  assert stored.progress == 100
  assert stored.return_value == {"total_responses": 5, "status_counts": {"CODING_COMPLETE": 5}}
  assert job_queue.progress_history[job.id] == [0, 20, 60, 90, 100]


@pytest.mark.anyio
async def test_worker_hands_the_pipeline_a_queue_cancellation_token(job_queue, settings) -> None:
  await job_queue.add(TEST_PERSON_CODING_QUEUE, {**PAYLOAD, "person_ids": [1]}, workspace_id=1)
  pipeline = _pipeline()

  await TestPersonCodingWorker(queue=job_queue, pipeline=pipeline, settings=settings).run_once()

  token = pipeline.process_test_persons_batch.await_args.kwargs["is_cancelled"]
  assert isinstance(token, QueueCancellationToken)


@pytest.mark.anyio
async def test_paused_job_is_requeued_and_resumable(job_queue, settings) -> None:
  job = await job_queue.add(TEST_PERSON_CODING_QUEUE, PAYLOAD, workspace_id=1)
  manager = JobLifecycleManager(job_queue)

  async def pause_during_first_chunk(workspace_id, person_ids, **kwargs):
    await manager.pause_job(job.id)
    return CodingStatistics()

  worker = TestPersonCodingWorker(queue=job_queue, pipeline=_pipeline(pause_during_first_chunk), settings=settings)

  assert await worker.drain() == 1
  assert job_queue.jobs[job.id].state == "waiting"
  assert await worker.run_once() is None

  await manager.resume_job(job.id)
  resumed = TestPersonCodingWorker(queue=job_queue, pipeline=_pipeline(), settings=settings)
  assert await resumed.run_once() == job.id
  assert job_queue.jobs[job.id].state == "completed"


@pytest.mark.anyio
async def test_queue_paused_state_stops_before_completion(job_queue, settings) -> None:
  job = await job_queue.add(TEST_PERSON_CODING_QUEUE, {**PAYLOAD, "person_ids": [1]}, workspace_id=1)

  async def pause_queue(workspace_id, person_ids, **kwargs):
    await job_queue.set_state(job.id, "paused")
    return CodingStatistics()

  await TestPersonCodingWorker(queue=job_queue, pipeline=_pipeline(pause_queue), settings=settings).run_once()

  assert job_queue.jobs[job.id].state == "paused"
  assert job_queue.jobs[job.id].return_value is None


@pytest.mark.anyio
async def test_worker_fails_job_on_error(job_queue, settings) -> None:
  job = await job_queue.add(TEST_PERSON_CODING_QUEUE, PAYLOAD, workspace_id=1)
  pipeline = AsyncMock()
  pipeline.process_test_persons_batch.side_effect = RuntimeError("boom")

  result = await TestPersonCodingWorker(queue=job_queue, pipeline=pipeline, settings=settings).process_job(await job_queue.claim_next(TEST_PERSON_CODING_QUEUE))

  assert result is None
  assert job_queue.jobs[job.id].state == "failed"
  assert job_queue.jobs[job.id].failure_reason == "boom"


@pytest.mark.anyio
async def test_cancellation_token_reads_both_pause_signals(job_queue) -> None:
  job = await job_queue.add(TEST_PERSON_CODING_QUEUE, PAYLOAD)
  token = QueueCancellationToken(job_queue, job.id)

  assert await token() is False
  await job_queue.update_data(job.id, {**PAYLOAD, "is_paused": True})
  assert await token() is True
  await job_queue.update_data(job.id, PAYLOAD)
  await job_queue.set_state(job.id, "paused")
  assert await token() is True
  assert await QueueCancellationToken(job_queue, "missing")() is False


@pytest.mark.anyio
async def test_cancellation_token_treats_lookup_errors_as_running() -> None:
  queue = AsyncMock()
  queue.get_job.side_effect = ConnectionError("down")

  assert await QueueCancellationToken(queue, "job-1")() is False
