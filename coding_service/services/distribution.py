"""Deterministic allocation of unique cases to coders under double-coding quotas."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from coding_service.core.exceptions import InvalidDistributionRequestError
from coding_service.schema.distribution import (
  CaseGroup,
  CaseOrderingMode,
  Coder,
  DistributionItem,
  DistributionPlan,
  DistributionRequest,
  DistributionWarning,
  ItemAllocation,
  ResponseMatchingFlag,
  ResponseRecord,
  VariableReference,
)
from coding_service.services.response_matching import aggregate_responses_by_value
from coding_service.services.responses import find_responses_for_variables, get_response_matching_mode, get_variable_cases_in_jobs

logger = logging.getLogger(__name__)

CaseSortKey = Callable[[ResponseRecord], tuple]


def case_sort_key(mode: CaseOrderingMode) -> CaseSortKey:
  """Return the total order used to pick double-coded cases and split boundaries."""
  if mode == "alternating":
    return lambda r: (r.person_login, r.person_code, r.person_group, r.booklet_name, r.unit_name, r.variable_id, r.id)
  return lambda r: (r.variable_id, r.unit_name, r.person_login, r.person_code, r.person_group, r.booklet_name, r.id)


def order_cases(responses: Sequence[ResponseRecord], flags: Sequence[ResponseMatchingFlag], mode: CaseOrderingMode) -> list[CaseGroup]:
  """Aggregate responses into cases ordered by their first member.

  The first member of each case is its representative.
  """
  ordered = sorted(responses, key=case_sort_key(mode))
  return aggregate_responses_by_value(ordered, flags)


def build_items(request: DistributionRequest) -> list[DistributionItem]:
  """Bundles first, then bare variables, each in the given order."""
  items = [DistributionItem.from_bundle(bundle) for bundle in request.selected_variable_bundles]
  items.extend(DistributionItem.from_variable(variable) for variable in request.selected_variables)
  return items


def assign_double_coding(cases: Sequence[CaseGroup], coders: Sequence[Coder]) -> list[tuple[CaseGroup, tuple[Coder, ...]]]:
  """Give each case to the two coders with the fewest double-coded cases so far.

  Coders must be sorted by name; the stable sort breaks count ties by name.
  """
  counts = {coder.id: 0 for coder in coders}
  assignments: list[tuple[CaseGroup, tuple[Coder, ...]]] = []
  for case in cases:
    pair = tuple(sorted(coders, key=lambda coder: counts[coder.id])[:2])
    for coder in pair:
      counts[coder.id] += 1
    assignments.append((case, pair))
  return assignments


def split_evenly(cases: Sequence[CaseGroup], coder_count: int) -> list[list[CaseGroup]]:
  """Split cases into contiguous shares; the first `len % n` shares get one extra."""
  base, remainder = divmod(len(cases), coder_count)
  shares: list[list[CaseGroup]] = []
  start = 0
  for index in range(coder_count):
    size = base + (1 if index < remainder else 0)
    shares.append(list(cases[start : start + size]))
    start += size
  return shares


def allocate_item(
  item: DistributionItem, responses: Sequence[ResponseRecord], *, coders: Sequence[Coder], request: DistributionRequest, flags: Sequence[ResponseMatchingFlag], remaining_budget: int | None
) -> tuple[ItemAllocation, int | None]:
  """Allocate one item and return it with the budget left afterwards.

  The budget counts (coder, case) assignments. Coders are capped in name order,
  each keeping the head of its list, so double-coded cases survive first.
  """
  cases = order_cases(responses, flags, request.case_ordering_mode)
  allocation = ItemAllocation(
    item=item,
    unique_cases=len(cases),
    total_responses=len(responses),
    per_coder_case_counts={coder.name: 0 for coder in coders},
    per_coder_double_coded_counts={coder.name: 0 for coder in coders},
    assignments={coder.id: [] for coder in coders},
  )
  if not cases:
    return allocation, remaining_budget

  # Double coding needs two distinct coders.
  double_count = request.double_coding_count(len(cases)) if len(coders) >= 2 else 0
  if remaining_budget is not None:
    double_count = min(double_count, remaining_budget)
  allocation.double_coded_cases = double_count

  coder_cases: dict[int, list[tuple[CaseGroup, bool]]] = {coder.id: [] for coder in coders}
  for case, pair in assign_double_coding(cases[:double_count], coders):
    for coder in pair:
      coder_cases[coder.id].append((case, True))
  for coder, share in zip(coders, split_evenly(cases[double_count:], len(coders)), strict=True):
    coder_cases[coder.id].extend((case, False) for case in share)

  for coder in coders:
    kept = coder_cases[coder.id]
    if remaining_budget is not None:
      kept = kept[:remaining_budget]
      remaining_budget -= len(kept)
    double_kept = sum(1 for _, is_double in kept if is_double)
    allocation.assignments[coder.id] = [case.representative for case, _ in kept]
    allocation.per_coder_case_counts[coder.name] = len(kept)
    allocation.per_coder_double_coded_counts[coder.name] = double_kept
    # Single-coded shares are disjoint, so their kept lengths add up to distinct cases.
    allocation.single_coded_cases_assigned += len(kept) - double_kept
  return allocation, remaining_budget


def collect_warnings(variables: Sequence[VariableReference], responses: Sequence[ResponseRecord], cases_in_jobs: Mapping[str, int]) -> list[DistributionWarning]:
  """Warn for variables whose responses are already partly assigned to coding jobs."""
  totals: dict[str, int] = {}
  for response in responses:
    key = f"{response.unit_name}::{response.variable_id}"
    totals[key] = totals.get(key, 0) + 1

  warnings: list[DistributionWarning] = []
  seen: set[str] = set()
  for variable in variables:
    if variable.key in seen:
      continue
    seen.add(variable.key)
    in_jobs = cases_in_jobs.get(variable.key, 0)
    total = totals.get(variable.key, 0)
    available = total - in_jobs
    if in_jobs > 0 and 0 < available < total:
      warnings.append(
        DistributionWarning(
          unit_name=variable.unit_name,
          variable_id=variable.variable_id,
          message=f"Variable: only {available} of {total} cases still available",
          cases_in_jobs=in_jobs,
          available_cases=available,
        )
      )
  return warnings


def allocate_distribution(
  request: DistributionRequest, responses: Sequence[ResponseRecord], *, flags: Sequence[ResponseMatchingFlag] = (), cases_in_jobs: Mapping[str, int] | None = None
) -> DistributionPlan:
  """Build the allocation plan for every selected item.

  Pure over its inputs: identical requests and responses give identical plans.
  """
  coders = request.sorted_coders()
  if not coders:
    raise InvalidDistributionRequestError("At least one coder must be selected.")
  if len({coder.id for coder in coders}) != len(coders):
    raise InvalidDistributionRequestError("Selected coders must be unique.")
  # Per-coder counts are reported by name.
  if len({coder.name for coder in coders}) != len(coders):
    raise InvalidDistributionRequestError("Selected coder names must be unique.")

  by_variable: dict[tuple[str, str], list[ResponseRecord]] = {}
  for response in responses:
    by_variable.setdefault((response.unit_name, response.variable_id), []).append(response)

  items = build_items(request)
  all_variables = [variable for item in items for variable in item.variables]
  remaining_budget = request.max_coding_cases
  allocations: list[ItemAllocation] = []
  for item in items:
    item_responses: list[ResponseRecord] = []
    for variable in dict.fromkeys(item.variables):
      item_responses.extend(by_variable.get((variable.unit_name, variable.variable_id), []))
    allocation, remaining_budget = allocate_item(item, item_responses, coders=coders, request=request, flags=flags, remaining_budget=remaining_budget)
    allocations.append(allocation)

  return DistributionPlan(items=allocations, matching_flags=list(flags), warnings=collect_warnings(all_variables, responses, cases_in_jobs or {}), remaining_budget=remaining_budget)


async def calculate_distribution(session: AsyncSession, workspace_id: int, request: DistributionRequest) -> DistributionPlan:
  """Dry-run allocation against the workspace's current responses."""
  flags = await get_response_matching_mode(session, workspace_id)
  variables = [variable for item in build_items(request) for variable in item.variables]
  responses = await find_responses_for_variables(session, workspace_id, variables)
  cases_in_jobs = await get_variable_cases_in_jobs(session, workspace_id)
  plan = allocate_distribution(request, responses, flags=flags, cases_in_jobs=cases_in_jobs)
  logger.info("Calculated distribution for workspace %s: %s items, %s responses, %s warnings", workspace_id, len(plan.items), len(responses), len(plan.warnings))
  return plan
