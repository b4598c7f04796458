"""Staged automatic coding of one chunk of test persons."""

from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coding_service.jobs.models import CodingStatistics
from coding_service.jobs.progress import CancellationCheck, ProgressCallback, never_cancelled
from coding_service.schema.sql import Response, Unit
from coding_service.services.autocoder import CodingScheme, code_response
from coding_service.services.coding_file_cache import CodingFileCache, extract_coding_scheme_ref
from coding_service.services.coding_statistics import invalidate_incomplete_variables, refresh_statistics
from coding_service.services.response_status import ResponseStatus
from coding_service.services.responses import (
  StoredFile,
  find_booklets_by_person_ids,
  find_incomplete_responses_by_unit_ids,
  find_persons_by_ids,
  find_units_by_booklet_ids,
  get_unit_variable_map,
)
from coding_service.storage.cache import CacheStore

logger = logging.getLogger(__name__)

_EMPTY_SCHEME = CodingScheme()


class _Cancelled(Exception):
  """Internal signal that a stage boundary observed cancellation."""


def _input_status(response: Response, auto_coder_run: int) -> int:
  if auto_coder_run == 2:
    return response.status_v2 or response.status_v1 or response.status
  # DERIVE_PENDING is recorded in the first-run column.
  if response.status_v1 == ResponseStatus.DERIVE_PENDING:
    return response.status_v1
  return response.status


def _unit_alias(unit: Unit) -> str:
  return (unit.alias or unit.name).upper()


class BatchCodingPipeline:
  """Runs the coding stages for one chunk of persons inside one transaction.

  Cancellation is polled between stages. A cancelled or failed chunk is rolled
  back and returns empty statistics instead of raising.
  """

  def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, file_cache: CodingFileCache, cache: CacheStore, update_batch_size: int = 500) -> None:
    self._session_factory = session_factory
    self._file_cache = file_cache
    self._cache = cache
    self._update_batch_size = update_batch_size

  async def process_test_persons_batch(
    self, workspace_id: int, person_ids: Sequence[int], *, auto_coder_run: int = 1, progress: ProgressCallback | None = None, is_cancelled: CancellationCheck | None = None, job_id: str | None = None
  ) -> CodingStatistics:
    """Code the eligible responses of the given persons and write the results back."""
    statistics = CodingStatistics()
    check = is_cancelled or never_cancelled
    committed = False
    metrics: dict[str, float] = {}
    started = time.perf_counter()

    async def report(value: int) -> None:
      if progress is not None:
        await progress(value)

    async def checkpoint(value: int | None, stage: str) -> None:
      if value is not None:
        await report(value)
      if await check():
        logger.info("Job %s was cancelled or paused after %s", job_id or "<inline>", stage)
        raise _Cancelled(stage)

    await report(0)
    if await check():
      logger.info("Job %s was cancelled or paused before processing started", job_id or "<inline>")
      return statistics

    async with self._session_factory() as session:
      try:
        stage_start = time.perf_counter()
        persons = await find_persons_by_ids(session, workspace_id, person_ids)
        metrics["persons"] = time.perf_counter() - stage_start
        if not persons:
          logger.warning("No persons found for the requested ids in workspace %s", workspace_id)
          return statistics
        await checkpoint(10, "fetching persons")

        stage_start = time.perf_counter()
        booklets = await find_booklets_by_person_ids(session, [person.id for person in persons])
        metrics["booklets"] = time.perf_counter() - stage_start
        if not booklets:
          logger.info("No booklets found for %s persons", len(persons))
          return statistics
        await checkpoint(20, "fetching booklets")

        stage_start = time.perf_counter()
        units = await find_units_by_booklet_ids(session, [booklet.id for booklet in booklets])
        metrics["units"] = time.perf_counter() - stage_start
        if not units:
          logger.info("No units found for %s booklets", len(booklets))
          return statistics
        await checkpoint(30, "fetching units")

        unit_aliases = list(dict.fromkeys(_unit_alias(unit) for unit in units))
        await checkpoint(40, "mapping units")

        stage_start = time.perf_counter()
        responses = await find_incomplete_responses_by_unit_ids(session, [unit.id for unit in units])
        metrics["responses"] = time.perf_counter() - stage_start
        if not responses:
          logger.info("No responses to code for %s units", len(units))
          return statistics
        await checkpoint(50, "fetching responses")

        filtered = await self._filter_valid_variables(session, workspace_id, responses, units)
        logger.info("Filtered responses: %s -> %s (removed %s invalid variable responses)", len(responses), len(filtered), len(responses) - len(filtered))
        await checkpoint(None, "filtering responses")

        responses_by_unit: dict[int, list[Response]] = {}
        for response in filtered:
          responses_by_unit.setdefault(response.unit_id, []).append(response)
        await checkpoint(60, "grouping responses")

        stage_start = time.perf_counter()
        test_files = await self._file_cache.get_test_files(session, workspace_id, unit_aliases)
        metrics["test_files"] = time.perf_counter() - stage_start
        await checkpoint(70, "fetching test files")

        stage_start = time.perf_counter()
        scheme_refs = self._extract_scheme_refs(units, test_files)
        metrics["scheme_refs"] = time.perf_counter() - stage_start
        await checkpoint(80, "extracting scheme references")

        stage_start = time.perf_counter()
        schemes = await self._file_cache.get_coding_schemes(session, workspace_id, sorted(set(scheme_refs.values())))
        metrics["schemes"] = time.perf_counter() - stage_start
        await report(85)
        await checkpoint(90, "fetching coding schemes")

        stage_start = time.perf_counter()
        coded = self._code_responses(units, responses_by_unit, scheme_refs, schemes, statistics, auto_coder_run)
        metrics["coding"] = time.perf_counter() - stage_start
        await checkpoint(95, "coding responses")

        stage_start = time.perf_counter()
        await self._write_results(session, coded, report, check)
        await session.commit()
        committed = True
        metrics["update"] = time.perf_counter() - stage_start
        logger.info("Updated %s responses for workspace %s", len(coded), workspace_id)

        await invalidate_incomplete_variables(self._cache, workspace_id)
        await refresh_statistics(session, workspace_id, self._cache)
        await report(100)
      except _Cancelled:
        await session.rollback()
        return statistics if committed else CodingStatistics()
      except Exception:  # noqa: BLE001
        logger.error("Error while processing test persons batch for workspace %s", workspace_id, exc_info=True)
        await session.rollback()
        # Counts only describe rows that were written.
        return statistics if committed else CodingStatistics()

    total_ms = (time.perf_counter() - started) * 1000
    logger.info("Batch timings for workspace %s (total %.0fms): %s", workspace_id, total_ms, ", ".join(f"{name}={seconds * 1000:.0f}ms" for name, seconds in metrics.items()))
    return statistics

  async def _filter_valid_variables(self, session: AsyncSession, workspace_id: int, responses: Sequence[Response], units: Sequence[Unit]) -> list[Response]:
    """Keep responses whose variable is declared by their unit definition."""
    unit_variables = {name.upper(): variables for name, variables in (await get_unit_variable_map(session, workspace_id)).items()}
    unit_names = {unit.id: unit.name.upper() for unit in units}
    return [response for response in responses if response.variable_id in unit_variables.get(unit_names.get(response.unit_id, ""), ())]

  def _extract_scheme_refs(self, units: Sequence[Unit], test_files: dict[str, StoredFile]) -> dict[int, str]:
    refs: dict[int, str] = {}
    for unit in units:
      test_file = test_files.get(_unit_alias(unit))
      if test_file is None:
        continue
      try:
        ref = extract_coding_scheme_ref(test_file.data)
      except ET.ParseError as exc:
        logger.error("Failed to read test file %s: %s", test_file.filename, exc)
        continue
      if ref:
        refs[unit.id] = ref
    return refs

  def _code_responses(
    self, units: Sequence[Unit], responses_by_unit: dict[int, list[Response]], scheme_refs: dict[int, str], schemes: dict[str, CodingScheme], statistics: CodingStatistics, auto_coder_run: int
  ) -> list[dict[str, Any]]:
    suffix = "v3" if auto_coder_run == 2 else "v1"
    coded: list[dict[str, Any]] = []
    for unit in units:
      unit_responses = responses_by_unit.get(unit.id)
      if not unit_responses:
        continue
      ref = scheme_refs.get(unit.id)
      # Units without a scheme are still coded, against the empty scheme.
      scheme = schemes.get(ref, _EMPTY_SCHEME) if ref else _EMPTY_SCHEME
      for response in unit_responses:
        outcome = code_response(response.value, _input_status(response, auto_coder_run), scheme.find_variable_coding(response.variable_id))
        statistics.count(outcome.status.name)
        coded.append({"id": response.id, f"code_{suffix}": outcome.code, f"status_{suffix}": int(outcome.status), f"score_{suffix}": outcome.score})
    return coded

  async def _write_results(self, session: AsyncSession, coded: Sequence[dict[str, Any]], report: ProgressCallback, check: CancellationCheck) -> None:
    """Apply coded results in sub-batches; cancellation is checked before each one."""
    if not coded:
      return
    batches = [coded[index : index + self._update_batch_size] for index in range(0, len(coded), self._update_batch_size)]
    for number, batch in enumerate(batches, start=1):
      if await check():
        logger.info("Cancelled before updating batch #%s", number)
        raise _Cancelled("updating responses")
      await session.execute(update(Response), list(batch))
      await report(round(min(95 + 5 * number / len(batches), 99)))
