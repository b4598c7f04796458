"""Request and plan models for coding job distribution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator

CaseOrderingMode = Literal["continuous", "alternating"]
ItemKind = Literal["bundle", "variable"]


class ResponseMatchingFlag(StrEnum):
  NO_AGGREGATION = "NO_AGGREGATION"
  IGNORE_CASE = "IGNORE_CASE"
  IGNORE_WHITESPACE = "IGNORE_WHITESPACE"


class VariableReference(BaseModel):
  """A single codeable variable of a unit."""

  unit_name: StrictStr = Field(min_length=1)
  variable_id: StrictStr = Field(min_length=1)
  model_config = ConfigDict(frozen=True, extra="forbid")

  @property
  def key(self) -> str:
    return f"{self.unit_name}::{self.variable_id}"


class BundleItem(BaseModel):
  """A named group of variables distributed as one item."""

  id: StrictInt
  name: StrictStr = Field(min_length=1)
  variables: list[VariableReference] = Field(default_factory=list)
  model_config = ConfigDict(frozen=True, extra="forbid")


class Coder(BaseModel):
  id: StrictInt
  name: StrictStr
  username: StrictStr = ""
  model_config = ConfigDict(frozen=True, extra="forbid")


class DistributionRequest(BaseModel):
  """Operator selection for a distribution preview or job creation."""

  selected_variables: list[VariableReference] = Field(default_factory=list)
  selected_variable_bundles: list[BundleItem] = Field(default_factory=list)
  selected_coders: list[Coder] = Field(min_length=1, description="Coders eligible to receive assignments.")
  double_coding_absolute: int | None = Field(default=None, ge=0, description="Cases per item coded by two coders. Wins over the percentage.")
  double_coding_percentage: float | None = Field(default=None, ge=0, le=100, description="Share of unique cases per item coded by two coders.")
  case_ordering_mode: CaseOrderingMode = "continuous"
  max_coding_cases: int | None = Field(default=None, ge=1, description="Optional ceiling on cases assigned across all items.")
  model_config = ConfigDict(extra="forbid")

  @model_validator(mode="after")
  def _require_items(self) -> DistributionRequest:
    if not self.selected_variables and not self.selected_variable_bundles:
      raise ValueError("At least one variable or variable bundle must be selected.")
    return self

  def sorted_coders(self) -> list[Coder]:
    """Return coders ordered by name, the order every allocation step uses."""
    return sorted(self.selected_coders, key=lambda coder: (coder.name, coder.id))

  def double_coding_count(self, total_cases: int) -> int:
    if self.double_coding_absolute:
      return min(self.double_coding_absolute, total_cases)
    if self.double_coding_percentage:
      return int(self.double_coding_percentage / 100 * total_cases)
    return 0


@dataclass(frozen=True)
class ResponseRecord:
  """A coder-visible response fetched for one distribution run."""

  id: int
  unit_name: str
  variable_id: str
  value: str | None
  person_login: str = ""
  person_code: str = ""
  person_group: str = ""
  booklet_name: str = ""
  unit_alias: str | None = None


@dataclass(frozen=True)
class CaseGroup:
  """Responses sharing one normalized value."""

  normalized_value: str
  responses: tuple[ResponseRecord, ...]

  @property
  def representative(self) -> ResponseRecord:
    return self.responses[0]

  @property
  def total_responses(self) -> int:
    return len(self.responses)


@dataclass(frozen=True)
class DistributionItem:
  """A bundle or a bare variable, the unit of allocation."""

  kind: ItemKind
  key: str
  variables: tuple[VariableReference, ...]
  bundle_id: int | None = None

  @classmethod
  def from_bundle(cls, bundle: BundleItem) -> DistributionItem:
    return cls(kind="bundle", key=bundle.name, variables=tuple(bundle.variables), bundle_id=bundle.id)

  @classmethod
  def from_variable(cls, variable: VariableReference) -> DistributionItem:
    return cls(kind="variable", key=variable.key, variables=(variable,))

  @property
  def name_parts(self) -> tuple[str, str]:
    """Unit (or bundle) name and variable id used in generated job names."""
    if self.kind == "bundle":
      return self.key, ""
    variable = self.variables[0]
    return variable.unit_name, variable.variable_id


@dataclass
class ItemAllocation:
  """Allocation of one item's unique cases across the selected coders."""

  item: DistributionItem
  unique_cases: int
  total_responses: int
  double_coded_cases: int = 0
  single_coded_cases_assigned: int = 0
  per_coder_case_counts: dict[str, int] = field(default_factory=dict)
  per_coder_double_coded_counts: dict[str, int] = field(default_factory=dict)
  # Representative responses per coder id, double-coded cases first.
  assignments: dict[int, list[ResponseRecord]] = field(default_factory=dict)

  @property
  def assigned_cases(self) -> int:
    return self.double_coded_cases + self.single_coded_cases_assigned


@dataclass(frozen=True)
class DistributionWarning:
  """Signals that prior coding jobs already consumed part of a variable."""

  unit_name: str
  variable_id: str
  message: str
  cases_in_jobs: int
  available_cases: int


@dataclass
class DistributionPlan:
  items: list[ItemAllocation]
  matching_flags: list[ResponseMatchingFlag]
  warnings: list[DistributionWarning]
  remaining_budget: int | None = None

  def distribution(self) -> dict[str, dict[str, int]]:
    return {allocation.item.key: dict(allocation.per_coder_case_counts) for allocation in self.items}

  def double_coding_info(self) -> dict[str, dict[str, object]]:
    return {
      allocation.item.key: {
        "total_cases": sum(allocation.per_coder_case_counts.values()),
        "double_coded_cases": allocation.double_coded_cases,
        "single_coded_cases_assigned": allocation.single_coded_cases_assigned,
        "double_coded_cases_per_coder": dict(allocation.per_coder_double_coded_counts),
      }
      for allocation in self.items
    }

  def aggregation_info(self) -> dict[str, dict[str, int]]:
    return {allocation.item.key: {"unique_cases": allocation.unique_cases, "total_responses": allocation.total_responses} for allocation in self.items}


@dataclass(frozen=True)
class CreatedCodingJob:
  coder_id: int
  coder_name: str
  item_key: str
  job_id: int
  job_name: str
  case_count: int


@dataclass
class DistributionJobsResult:
  """Outcome of materializing a plan into coding jobs."""

  plan: DistributionPlan
  jobs: list[CreatedCodingJob]

  @property
  def jobs_created(self) -> int:
    return len(self.jobs)

  @property
  def message(self) -> str:
    return f"Created {len(self.jobs)} distributed coding jobs"
