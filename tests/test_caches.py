from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from coding_service.services import coding_file_cache
from coding_service.services.coding_file_cache import CodingFileCache, extract_coding_scheme_ref
from coding_service.services.responses import StoredFile
from coding_service.storage.cache import InMemoryCacheStore


class FakeClock:
  def __init__(self) -> None:
    self.now = 1000.0

  def __call__(self) -> float:
    return self.now


SCHEME_JSON = json.dumps({"variableCodings": [{"id": "V1", "codes": []}]})


@pytest.mark.anyio
async def test_cache_store_expires_entries() -> None:
  clock = FakeClock()
  store = InMemoryCacheStore(clock=clock)
  await store.set("short", {"a": 1}, ttl_seconds=10)
  await store.set("forever", [1])

  clock.now += 9
  assert await store.get("short") == {"a": 1}
  clock.now += 1
  assert await store.get("short") is None
  assert await store.get("forever") == [1]

  await store.delete("forever")
  assert await store.get("forever") is None


@pytest.mark.anyio
async def test_schemes_are_cached_per_workspace_until_expiry(monkeypatch) -> None:
  clock = FakeClock()
  fetch = AsyncMock(side_effect=lambda session, workspace_id, ids: [StoredFile(file_id=ref, filename=ref.lower(), data=SCHEME_JSON) for ref in ids])
  monkeypatch.setattr(coding_file_cache, "find_files_by_ids", fetch)
  cache = CodingFileCache(scheme_ttl_seconds=60, clock=clock)

  first = await cache.get_coding_schemes(None, 1, ["A.VOCS"])
  second = await cache.get_coding_schemes(None, 1, ["A.VOCS"])
  await cache.get_coding_schemes(None, 2, ["A.VOCS"])

  assert first["A.VOCS"] is second["A.VOCS"]
  assert first["A.VOCS"].variable_codings[0].id == "V1"
  assert fetch.await_count == 2

  clock.now += 61
  await cache.get_coding_schemes(None, 1, ["A.VOCS"])
  assert fetch.await_count == 3


@pytest.mark.anyio
async def test_unparseable_scheme_becomes_empty(monkeypatch) -> None:
  monkeypatch.setattr(coding_file_cache, "find_files_by_ids", AsyncMock(return_value=[StoredFile(file_id="BAD.VOCS", filename="bad.vocs", data="{not json")]))

  schemes = await CodingFileCache().get_coding_schemes(None, 1, ["BAD.VOCS"])

  assert schemes["BAD.VOCS"].variable_codings == []


@pytest.mark.anyio
async def test_test_files_fetch_only_missing_aliases(monkeypatch) -> None:
  clock = FakeClock()
  fetch = AsyncMock(side_effect=lambda session, workspace_id, ids: [StoredFile(file_id=alias, filename=f"{alias}.xml", data="<Unit/>") for alias in ids])
  monkeypatch.setattr(coding_file_cache, "find_files_by_ids", fetch)
  cache = CodingFileCache(test_file_ttl_seconds=30, clock=clock)

  await cache.get_test_files(None, 1, ["U1", "U2"])
  files = await cache.get_test_files(None, 1, ["U2", "U3"])

  assert sorted(files) == ["U1", "U2", "U3"]
  assert fetch.await_args_list[1].args[2] == ["U3"]

  await cache.get_test_files(None, 1, ["U1"])
  assert fetch.await_count == 2

  clock.now += 31
  await cache.get_test_files(None, 1, ["U1"])
  assert fetch.await_args_list[2].args[2] == ["U1"]

  cache.clear()
  await cache.get_test_files(None, 1, ["U1"])
  assert fetch.await_count == 4


def test_extract_coding_scheme_ref() -> None:
  assert extract_coding_scheme_ref('<?xml version="1.0" encoding="utf-8"?><Unit><codingSchemeRef> unit1.vocs </codingSchemeRef></Unit>') == "UNIT1.VOCS"
  assert extract_coding_scheme_ref("<Unit><Metadata/></Unit>") is None


@pytest.mark.anyio
async def test_cache_store_evicts_beyond_maxsize() -> None:
  store = InMemoryCacheStore(maxsize=2, clock=FakeClock())
  await store.set("a", 1)
  await store.set("b", 2)
  await store.set("c", 3)

  assert [await store.get(key) for key in ("a", "b", "c")].count(None) == 1
  assert await store.get("c") == 3


@pytest.mark.anyio
async def test_expired_schemes_are_dropped_without_explicit_cleanup(monkeypatch) -> None:
  clock = FakeClock()
  fetch = AsyncMock(side_effect=lambda session, workspace_id, ids: [StoredFile(file_id=ref, filename=ref.lower(), data=SCHEME_JSON) for ref in ids])
  monkeypatch.setattr(coding_file_cache, "find_files_by_ids", fetch)
  cache = CodingFileCache(scheme_ttl_seconds=60, clock=clock)

  await cache.get_coding_schemes(None, 1, ["A.VOCS"])
  clock.now += 61
  await cache.get_coding_schemes(None, 1, ["B.VOCS"])

  # Inserting B expires A, so only B is held.
  assert list(cache._schemes.keys()) == [(1, "B.VOCS")]
