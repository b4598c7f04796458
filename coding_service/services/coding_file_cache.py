"""TTL caches for unit test-definition files and coding scheme documents."""

from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ET
from collections.abc import Callable, Sequence

from cachetools import TTLCache
from sqlalchemy.ext.asyncio import AsyncSession

from coding_service.services.autocoder import CodingScheme
from coding_service.services.responses import StoredFile, find_files_by_ids

logger = logging.getLogger(__name__)

_SCHEME_CACHE_MAXSIZE = 1000
_TEST_FILE_CACHE_MAXSIZE = 100


def extract_coding_scheme_ref(xml_content: str) -> str | None:
  """Return the upper-cased coding scheme reference of a unit definition."""
  root = ET.fromstring(xml_content.encode("utf-8"))
  for element in root.iter():
    tag = element.tag.rsplit("}", 1)[-1] if isinstance(element.tag, str) else ""
    if tag.lower() == "codingschemeref":
      text = (element.text or "").strip()
      if text:
        return text.upper()
  return None


class CodingFileCache:
  """Process-wide cache owned by whoever constructs it and passed to consumers.

  Scheme entries are keyed by workspace and reference; test files by workspace.
  Concurrent fills of the same key are last-write-wins.
  """

  def __init__(self, *, scheme_ttl_seconds: float = 1800, test_file_ttl_seconds: float = 900, clock: Callable[[], float] = time.monotonic) -> None:
    self._schemes: TTLCache[tuple[int, str], CodingScheme] = TTLCache(maxsize=_SCHEME_CACHE_MAXSIZE, ttl=scheme_ttl_seconds, timer=clock)
    self._test_files: TTLCache[int, dict[str, StoredFile]] = TTLCache(maxsize=_TEST_FILE_CACHE_MAXSIZE, ttl=test_file_ttl_seconds, timer=clock)

  def clear(self) -> None:
    self._schemes.clear()
    self._test_files.clear()

  async def get_test_files(self, session: AsyncSession, workspace_id: int, unit_aliases: Sequence[str]) -> dict[str, StoredFile]:
    """Return test files by upper-cased unit alias, fetching only what is missing."""
    files = self._test_files.get(workspace_id)
    if files is not None:
      missing = [alias for alias in unit_aliases if alias not in files]
      if not missing:
        logger.debug("Using cached test files for workspace %s", workspace_id)
        return files
      logger.info("Fetching %s missing test files for workspace %s", len(missing), workspace_id)
      files = dict(files)
      for stored in await find_files_by_ids(session, workspace_id, missing):
        files[stored.file_id] = stored
      # Re-inserting restarts the entry's time-to-live.
      self._test_files[workspace_id] = files
      return files

    logger.info("Fetching all test files for workspace %s", workspace_id)
    files = {stored.file_id: stored for stored in await find_files_by_ids(session, workspace_id, list(unit_aliases))}
    self._test_files[workspace_id] = files
    return files

  async def get_coding_schemes(self, session: AsyncSession, workspace_id: int, scheme_refs: Sequence[str]) -> dict[str, CodingScheme]:
    """Return parsed schemes by reference; unparseable documents become the empty scheme."""
    result: dict[str, CodingScheme] = {}
    missing: list[str] = []
    for ref in scheme_refs:
      scheme = self._schemes.get((workspace_id, ref))
      if scheme is not None:
        result[ref] = scheme
      else:
        missing.append(ref)
    if not missing:
      return result

    logger.info("Fetching %s missing coding schemes for workspace %s", len(missing), workspace_id)
    for stored in await find_files_by_ids(session, workspace_id, missing):
      scheme = CodingScheme.parse_document(stored.data, source=stored.filename)
      result[stored.file_id] = scheme
      self._schemes[(workspace_id, stored.file_id)] = scheme
    return result
