"""Coding scheme documents and the per-response coding function."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from coding_service.services.response_status import ResponseStatus

logger = logging.getLogger(__name__)

# Statuses that carry a value the coder should classify.
_CODEABLE_STATUSES = (ResponseStatus.VALUE_CHANGED, ResponseStatus.DERIVE_PENDING)


class CodingRule(BaseModel):
  method: str
  parameters: list[str] = Field(default_factory=list)
  model_config = ConfigDict(extra="ignore")


class RuleSet(BaseModel):
  rules: list[CodingRule] = Field(default_factory=list)
  rule_operator_and: bool = Field(default=False, alias="ruleOperatorAnd")
  model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CodeDefinition(BaseModel):
  id: int | None = None
  score: int | None = None
  type: str = "UNSET"
  rule_sets: list[RuleSet] = Field(default_factory=list, alias="ruleSets")
  model_config = ConfigDict(extra="ignore", populate_by_name=True)

  @property
  def is_else(self) -> bool:
    return any(rule.method == "ELSE" for rule_set in self.rule_sets for rule in rule_set.rules)


class VariableCoding(BaseModel):
  id: str
  alias: str | None = None
  source_type: str = Field(default="BASE", alias="sourceType")
  codes: list[CodeDefinition] = Field(default_factory=list)
  model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CodingScheme(BaseModel):
  variable_codings: list[VariableCoding] = Field(default_factory=list, alias="variableCodings")
  model_config = ConfigDict(extra="ignore", populate_by_name=True)

  @classmethod
  def parse_document(cls, raw: str | dict[str, Any] | None, *, source: str = "") -> CodingScheme:
    """Parse a stored scheme document; anything unparseable yields the empty scheme."""
    if not raw:
      return cls()
    try:
      payload = json.loads(raw) if isinstance(raw, str) else raw
      return cls.model_validate(payload)
    except (ValueError, ValidationError) as exc:
      logger.error("Failed to parse coding scheme %s: %s", source or "<inline>", exc)
      return cls()

  def find_variable_coding(self, variable_id: str) -> VariableCoding | None:
    """Find the coding for a response variable, accepting either alias or id."""
    for coding in self.variable_codings:
      if variable_id in (coding.id, coding.alias):
        return coding
    return None


@dataclass(frozen=True)
class CodingOutcome:
  status: ResponseStatus
  code: int | None = None
  score: int | None = None


def _parameters(rule: CodingRule) -> list[str]:
  values: list[str] = []
  for parameter in rule.parameters:
    values.extend(line.strip() for line in str(parameter).splitlines() if line.strip())
  return values


def _as_number(raw: str) -> float | None:
  try:
    return float(raw.replace(",", "."))
  except ValueError:
    return None


def _rule_matches(rule: CodingRule, value: str | None) -> bool:
  text = (value or "").strip()
  method = rule.method.upper()
  if method == "IS_EMPTY":
    return text == ""
  if method == "MATCH":
    return text in _parameters(rule)
  if method == "MATCH_REGEX":
    for pattern in _parameters(rule):
      try:
        if re.search(pattern, text):
          return True
      except re.error:
        logger.warning("Skipping invalid coding regex %r.", pattern)
    return False
  if method in ("NUMERIC_MIN", "NUMERIC_MAX"):
    number = _as_number(text)
    bounds = [_as_number(parameter) for parameter in _parameters(rule)]
    if number is None or not bounds or bounds[0] is None:
      return False
    return number >= bounds[0] if method == "NUMERIC_MIN" else number <= bounds[0]
  return False


def _code_matches(code: CodeDefinition, value: str | None) -> bool:
  for rule_set in code.rule_sets:
    rules = [rule for rule in rule_set.rules if rule.method != "ELSE"]
    if not rules:
      continue
    results = [_rule_matches(rule, value) for rule in rules]
    if (all(results) if rule_set.rule_operator_and else any(results)):
      return True
  return False


def _outcome_for(code: CodeDefinition) -> CodingOutcome:
  status = ResponseStatus.INTENDED_INCOMPLETE if code.type == "INTENDED_INCOMPLETE" else ResponseStatus.CODING_COMPLETE
  return CodingOutcome(status=status, code=code.id, score=code.score)


def code_response(value: str | None, status: ResponseStatus | int, variable_coding: VariableCoding | None) -> CodingOutcome:
  """Code one response against its variable coding."""
  try:
    current = ResponseStatus(int(status))
  except ValueError:
    current = ResponseStatus.UNSET
  if current not in _CODEABLE_STATUSES:
    return CodingOutcome(status=current)
  if variable_coding is None or not variable_coding.codes:
    return CodingOutcome(status=ResponseStatus.NO_CODING)

  else_code: CodeDefinition | None = None
  for code in variable_coding.codes:
    if code.is_else:
      else_code = else_code or code
      continue
    if _code_matches(code, value):
      return _outcome_for(code)
  if else_code is not None:
    return _outcome_for(else_code)
  return CodingOutcome(status=ResponseStatus.CODING_INCOMPLETE)
