"""Run the background worker for test-person coding jobs."""

import argparse
import asyncio
import logging
import os
import sys

# Add the project root to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

logger = logging.getLogger("scripts.run_coding_worker")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(description="Process queued test-person coding jobs.")
  parser.add_argument("--once", action="store_true", help="Drain the queue and exit instead of polling.")
  parser.add_argument("--poll-interval", type=float, default=None, help="Seconds to wait between polls when the queue is empty.")
  return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
  from coding_service.config import get_settings
  from coding_service.core.database import require_session_factory
  from coding_service.core.logging import initialize_logging
  from coding_service.jobs.worker import TestPersonCodingWorker
  from coding_service.services.coding_file_cache import CodingFileCache
  from coding_service.services.coding_pipeline import BatchCodingPipeline
  from coding_service.storage.cache import InMemoryCacheStore
  from coding_service.storage.postgres_jobs_repo import PostgresJobQueue

  args = _parse_args(argv)
  settings = get_settings()
  initialize_logging(settings)

  session_factory = require_session_factory()
  file_cache = CodingFileCache(scheme_ttl_seconds=settings.scheme_cache_ttl_seconds, test_file_ttl_seconds=settings.test_file_cache_ttl_seconds)
  pipeline = BatchCodingPipeline(session_factory, file_cache=file_cache, cache=InMemoryCacheStore(), update_batch_size=settings.update_batch_size)
  worker = TestPersonCodingWorker(queue=PostgresJobQueue(session_factory), pipeline=pipeline, settings=settings)

  if args.once:
    processed = await worker.drain()
    logger.info("Processed %s jobs", processed)
    return 0

  logger.info("Starting coding worker (environment=%s)", settings.environment)
  await worker.run_forever(poll_interval=args.poll_interval)
  return 0


if __name__ == "__main__":
  try:
    sys.exit(asyncio.run(main()))
  except KeyboardInterrupt:
    logger.info("Coding worker stopped")
