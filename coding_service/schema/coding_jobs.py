"""Payload models for coder-facing coding job operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr

CodingJobStatus = Literal["pending", "open", "completed", "cancelled", "paused"]


class SelectedCode(BaseModel):
  id: int
  score: int | None = None
  coding_issue_option: int | None = None
  model_config = ConfigDict(extra="forbid")


class CodingProgressEntry(BaseModel):
  """One coder decision for a unit variable of a test person."""

  test_person: StrictStr = Field(min_length=1, description="Person key formatted as login@code[@group]@booklet.")
  unit_id: StrictStr = Field(min_length=1)
  variable_id: StrictStr = Field(min_length=1)
  selected_code: SelectedCode | None = None
  is_open: bool | None = None
  notes: str | None = None
  model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class PersonKey:
  login: str
  code: str
  booklet: str
  group: str | None = None

  @classmethod
  def parse(cls, raw: str) -> PersonKey:
    parts = raw.split("@")
    group = parts[2] if len(parts) == 4 else None
    return cls(login=parts[0], code=parts[1] if len(parts) > 1 else "", booklet=parts[-1], group=group)


@dataclass(frozen=True)
class CodingJobProgress:
  progress: int
  coded: int
  total: int
  open: int


@dataclass(frozen=True)
class IncompleteVariable:
  unit_name: str
  variable_id: str
  response_count: int
