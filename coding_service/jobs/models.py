"""Domain models for background coding jobs."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Literal

JobState = Literal["waiting", "delayed", "active", "completed", "failed", "paused"]
JobStatus = Literal["pending", "processing", "completed", "failed", "paused"]

TEST_PERSON_CODING_QUEUE = "test-person-coding"


@dataclass
class CodingStatistics:
  """Totals of coded responses per resulting status name."""

  total_responses: int = 0
  status_counts: dict[str, int] = field(default_factory=dict)

  def count(self, status_name: str) -> None:
    self.total_responses += 1
    self.status_counts[status_name] = self.status_counts.get(status_name, 0) + 1

  def merge(self, other: CodingStatistics) -> None:
    self.total_responses += other.total_responses
    for name, value in other.status_counts.items():
      self.status_counts[name] = self.status_counts.get(name, 0) + value

  def to_dict(self) -> dict[str, Any]:
    return {"total_responses": self.total_responses, "status_counts": dict(self.status_counts)}

  @classmethod
  def from_dict(cls, payload: dict[str, Any] | None) -> CodingStatistics:
    if not payload:
      return cls()
    counts = payload.get("status_counts") or {}
    return cls(total_responses=int(payload.get("total_responses") or 0), status_counts={str(key): int(value) for key, value in counts.items()})


@dataclass(frozen=True)
class BackgroundJobRecord:
  """Snapshot of a queued job and its payload."""

  id: str
  queue_name: str
  data: dict[str, Any]
  state: JobState
  progress: int
  created_at: datetime.datetime
  workspace_id: int | None = None
  return_value: dict[str, Any] | None = None
  failure_reason: str | None = None
  processed_at: datetime.datetime | None = None
  finished_at: datetime.datetime | None = None

  @property
  def is_paused(self) -> bool:
    """Application-level pause flag, independent of the queue's paused state."""
    return bool(self.data.get("is_paused"))


@dataclass(frozen=True)
class JobStatusView:
  status: JobStatus
  progress: int
  result: CodingStatistics | None = None
  error: str | None = None
  job_id: str | None = None
  workspace_id: int | None = None
  is_paused: bool = False
  created_at: datetime.datetime | None = None
  completed_at: datetime.datetime | None = None
  duration_ms: int | None = None
  group_names: str | None = None
  auto_coder_run: int | None = None


@dataclass(frozen=True)
class JobActionResult:
  success: bool
  message: str
  job_id: str | None = None
