"""Aggregation of responses into unique cases by normalized value."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence

from coding_service.schema.distribution import CaseGroup, ResponseMatchingFlag, ResponseRecord

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def matching_mode_setting_key(workspace_id: int) -> str:
  return f"workspace-{workspace_id}-response-matching-mode"


def parse_matching_flags(content: str | None) -> list[ResponseMatchingFlag]:
  """Parse the persisted `{"flags": [...]}` setting, ignoring unknown flags."""
  if not content:
    return []
  try:
    payload = json.loads(content)
  except (TypeError, ValueError):
    logger.warning("Ignoring unparseable response matching setting.")
    return []
  raw_flags = payload.get("flags") if isinstance(payload, dict) else None
  if not isinstance(raw_flags, list):
    return []
  flags: list[ResponseMatchingFlag] = []
  for raw in raw_flags:
    try:
      flag = ResponseMatchingFlag(raw)
    except ValueError:
      logger.warning("Ignoring unknown response matching flag %r.", raw)
      continue
    if flag not in flags:
      flags.append(flag)
  return flags


def normalize_value(value: str | None, flags: Iterable[ResponseMatchingFlag]) -> str:
  """Normalize a response value for grouping."""
  if value is None:
    return ""
  active = set(flags)
  normalized = value
  if ResponseMatchingFlag.IGNORE_CASE in active:
    normalized = normalized.lower()
  if ResponseMatchingFlag.IGNORE_WHITESPACE in active:
    normalized = _WHITESPACE.sub("", normalized)
  return normalized


def aggregate_responses_by_value(responses: Sequence[ResponseRecord], flags: Sequence[ResponseMatchingFlag]) -> list[CaseGroup]:
  """Group responses into unique cases, preserving first-seen order.

  With NO_AGGREGATION every response forms its own case.
  """
  if ResponseMatchingFlag.NO_AGGREGATION in flags:
    return [CaseGroup(normalized_value=response.value or "", responses=(response,)) for response in responses]

  groups: dict[str, list[ResponseRecord]] = {}
  for response in responses:
    groups.setdefault(normalize_value(response.value, flags), []).append(response)
  return [CaseGroup(normalized_value=key, responses=tuple(members)) for key, members in groups.items()]
