"""Response status codes shared by the coding pipeline and reports."""

from __future__ import annotations

from enum import IntEnum


class ResponseStatus(IntEnum):
  UNSET = 0
  NOT_REACHED = 1
  DISPLAYED = 2
  VALUE_CHANGED = 3
  SYSTEM_ERROR = 4
  INVALID = 5
  DERIVE_ERROR = 6
  CODING_COMPLETE = 7
  CODING_INCOMPLETE = 8
  CODING_ERROR = 9
  PARTLY_DISPLAYED = 10
  DERIVE_PENDING = 11
  INTENDED_INCOMPLETE = 12
  CODE_SELECTION_PENDING = 13
  NO_CODING = 14


# Raw statuses picked up by the automatic coder.
AUTO_CODING_INPUT_STATUSES = (ResponseStatus.NOT_REACHED, ResponseStatus.DISPLAYED, ResponseStatus.VALUE_CHANGED)


def status_to_number(name: str | None) -> int | None:
  """Map a status name to its stored integer code; unknown names map to None."""
  if not name:
    return None
  try:
    return int(ResponseStatus[name.strip().upper()])
  except KeyError:
    return None


def status_to_name(value: int | None) -> str | None:
  if value is None:
    return None
  try:
    return ResponseStatus(int(value)).name
  except ValueError:
    return None
