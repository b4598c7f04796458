from __future__ import annotations

import pytest

from coding_service.services.autocoder import CodingScheme, code_response
from coding_service.services.response_status import ResponseStatus, status_to_name, status_to_number

SCHEME = CodingScheme.parse_document(
  {
    "variableCodings": [
      {
        "id": "var_1",
        "alias": "V1",
        "codes": [
          {"id": 1, "score": 1, "type": "FULL_CREDIT", "ruleSets": [{"rules": [{"method": "MATCH", "parameters": ["Paris\nparis"]}]}]},
          {"id": 2, "score": 1, "type": "FULL_CREDIT", "ruleSets": [{"ruleOperatorAnd": True, "rules": [{"method": "NUMERIC_MIN", "parameters": ["10"]}, {"method": "NUMERIC_MAX", "parameters": ["20"]}]}]},
          {"id": 3, "score": 0, "type": "INTENDED_INCOMPLETE", "ruleSets": [{"rules": [{"method": "MATCH_REGEX", "parameters": ["^\\?+$"]}]}]},
          {"id": 9, "score": 0, "type": "NO_CREDIT", "ruleSets": [{"rules": [{"method": "IS_EMPTY"}]}]},
        ],
      },
      {"id": "V2", "codes": [{"id": 0, "score": 0, "type": "NO_CREDIT", "ruleSets": [{"rules": [{"method": "ELSE"}]}]}]},
      {"id": "V3", "codes": [{"id": 1, "score": 1, "ruleSets": [{"rules": [{"method": "MATCH", "parameters": ["yes"]}]}]}]},
    ]
  }
)


@pytest.mark.parametrize(
  ("value", "expected"),
  [
    ("Paris", (ResponseStatus.CODING_COMPLETE, 1, 1)),
    ("15,5", (ResponseStatus.CODING_COMPLETE, 2, 1)),
    ("25", (ResponseStatus.CODING_INCOMPLETE, None, None)),
    ("???", (ResponseStatus.INTENDED_INCOMPLETE, 3, 0)),
    ("  ", (ResponseStatus.CODING_COMPLETE, 9, 0)),
  ],
)
def test_first_matching_code_wins(value: str, expected: tuple) -> None:
  outcome = code_response(value, ResponseStatus.VALUE_CHANGED, SCHEME.find_variable_coding("V1"))

  assert (outcome.status, outcome.code, outcome.score) == expected


def test_variable_id_and_alias_both_resolve() -> None:
  assert SCHEME.find_variable_coding("var_1") is SCHEME.find_variable_coding("V1")
  assert SCHEME.find_variable_coding("unknown") is None


def test_else_code_applies_when_nothing_matches() -> None:
  outcome = code_response("anything", ResponseStatus.DERIVE_PENDING, SCHEME.find_variable_coding("V2"))

  assert (outcome.status, outcome.code) == (ResponseStatus.CODING_COMPLETE, 0)


def test_statuses_outside_coding_pass_through() -> None:
  assert code_response("Paris", ResponseStatus.NOT_REACHED, SCHEME.find_variable_coding("V1")).status == ResponseStatus.NOT_REACHED
  assert code_response("Paris", 99, SCHEME.find_variable_coding("V1")).status == ResponseStatus.UNSET


def test_missing_coding_yields_no_coding() -> None:
  assert code_response("x", ResponseStatus.VALUE_CHANGED, None).status == ResponseStatus.NO_CODING
  assert code_response("x", ResponseStatus.VALUE_CHANGED, CodingScheme().find_variable_coding("V1")).status == ResponseStatus.NO_CODING


def test_invalid_documents_parse_to_empty_scheme() -> None:
  assert CodingScheme.parse_document("{broken").variable_codings == []
  assert CodingScheme.parse_document('{"variableCodings": "nope"}').variable_codings == []
  assert CodingScheme.parse_document(None).variable_codings == []


def test_status_conversions() -> None:
  assert status_to_number("coding_incomplete") == 8
  assert status_to_number("NOPE") is None
  assert status_to_name(12) == "INTENDED_INCOMPLETE"
  assert status_to_name(99) is None
