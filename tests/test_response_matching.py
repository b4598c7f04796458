from __future__ import annotations

import itertools

import pytest

from coding_service.schema.distribution import ResponseMatchingFlag, ResponseRecord
from coding_service.services.response_matching import aggregate_responses_by_value, matching_mode_setting_key, normalize_value, parse_matching_flags

ALL_FLAGS = list(ResponseMatchingFlag)


def _record(response_id: int, value: str | None) -> ResponseRecord:
  return ResponseRecord(id=response_id, unit_name="UNIT1", variable_id="V1", value=value)


@pytest.mark.parametrize("value", ["Paris ", " p A r i s", "", "Ünïcode\tTEXT\n", "a  b"])
def test_normalize_value_is_idempotent_for_every_flag_combination(value: str) -> None:
  for size in range(len(ALL_FLAGS) + 1):
    for flags in itertools.combinations(ALL_FLAGS, size):
      once = normalize_value(value, flags)
      assert normalize_value(once, flags) == once


def test_normalize_value_treats_missing_values_as_empty() -> None:
  assert normalize_value(None, [ResponseMatchingFlag.IGNORE_CASE]) == ""


def test_case_and_whitespace_variants_share_one_case() -> None:
  responses = [_record(1, "Paris "), _record(2, "paris")]

  groups = aggregate_responses_by_value(responses, [ResponseMatchingFlag.IGNORE_CASE, ResponseMatchingFlag.IGNORE_WHITESPACE])

  assert len(groups) == 1
  assert groups[0].total_responses == 2
  assert groups[0].representative.id == 1


def test_no_aggregation_keeps_every_response_separate() -> None:
  responses = [_record(1, "Paris "), _record(2, "paris"), _record(3, "paris")]

  groups = aggregate_responses_by_value(responses, [ResponseMatchingFlag.NO_AGGREGATION, ResponseMatchingFlag.IGNORE_CASE])

  assert [group.representative.id for group in groups] == [1, 2, 3]


def test_exact_values_group_without_flags() -> None:
  responses = [_record(1, "b"), _record(2, "a"), _record(3, "b"), _record(4, "B")]

  groups = aggregate_responses_by_value(responses, [])

  assert [(group.normalized_value, [r.id for r in group.responses]) for group in groups] == [("b", [1, 3]), ("a", [2]), ("B", [4])]


def test_parse_matching_flags_ignores_unknown_and_invalid_content() -> None:
  assert parse_matching_flags('{"flags": ["IGNORE_CASE", "BOGUS", "IGNORE_CASE"]}') == [ResponseMatchingFlag.IGNORE_CASE]
  assert parse_matching_flags("not json") == []
  assert parse_matching_flags('{"flags": "IGNORE_CASE"}') == []
  assert parse_matching_flags(None) == []


def test_matching_mode_setting_key() -> None:
  assert matching_mode_setting_key(7) == "workspace-7-response-matching-mode"
