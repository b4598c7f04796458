"""Query helpers over persons, booklets, units, responses and files."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coding_service.schema.distribution import ResponseMatchingFlag, ResponseRecord, VariableReference
from coding_service.schema.sql import Booklet, CodingJob, CodingJobUnit, FileUpload, Person, Response, Unit, WorkspaceSetting
from coding_service.services.autocoder import CodingScheme
from coding_service.services.response_matching import matching_mode_setting_key, parse_matching_flags
from coding_service.services.response_status import AUTO_CODING_INPUT_STATUSES, ResponseStatus

logger = logging.getLogger(__name__)

UNIT_FILE_TYPE = "Unit"
RESOURCE_FILE_TYPE = "Resource"


@dataclass(frozen=True)
class StoredFile:
  file_id: str
  filename: str
  data: str


async def find_responses_for_variables(session: AsyncSession, workspace_id: int, variables: Sequence[VariableReference]) -> list[ResponseRecord]:
  """Return manually codeable responses of considered persons for the given variables."""
  if not variables:
    return []
  variable_filter = or_(*[and_(Unit.name == variable.unit_name, Response.variable_id == variable.variable_id) for variable in set(variables)])
  stmt = (
    select(Response.id, Unit.name, Unit.alias, Response.variable_id, Response.value, Person.login, Person.code, Person.group, Booklet.name)
    .join(Unit, Response.unit_id == Unit.id)
    .join(Booklet, Unit.booklet_id == Booklet.id)
    .join(Person, Booklet.person_id == Person.id)
    .where(Person.workspace_id == workspace_id, Person.consider.is_(True), Response.status_v1 == int(ResponseStatus.CODING_INCOMPLETE), variable_filter)
    .order_by(Response.id.asc())
  )
  rows = (await session.execute(stmt)).all()
  return [
    ResponseRecord(
      id=int(row[0]),
      unit_name=row[1],
      unit_alias=row[2],
      variable_id=row[3],
      value=row[4],
      person_login=row[5] or "",
      person_code=row[6] or "",
      person_group=row[7] or "",
      booklet_name=row[8] or "",
    )
    for row in rows
  ]


async def find_persons_by_ids(session: AsyncSession, workspace_id: int, person_ids: Sequence[int]) -> list[Person]:
  if not person_ids:
    return []
  stmt = select(Person).where(Person.workspace_id == workspace_id, Person.id.in_(list(person_ids))).order_by(Person.id.asc())
  return list((await session.execute(stmt)).scalars().all())


async def find_persons_by_groups(session: AsyncSession, workspace_id: int, groups: Sequence[str]) -> list[Person]:
  """Return considered persons belonging to any of the groups."""
  if not groups:
    return []
  stmt = select(Person).where(Person.workspace_id == workspace_id, Person.group.in_(list(groups)), Person.consider.is_(True)).order_by(Person.id.asc())
  return list((await session.execute(stmt)).scalars().all())


async def find_booklets_by_person_ids(session: AsyncSession, person_ids: Sequence[int]) -> list[Booklet]:
  if not person_ids:
    return []
  stmt = select(Booklet).where(Booklet.person_id.in_(list(person_ids))).order_by(Booklet.id.asc())
  return list((await session.execute(stmt)).scalars().all())


async def find_units_by_booklet_ids(session: AsyncSession, booklet_ids: Sequence[int]) -> list[Unit]:
  if not booklet_ids:
    return []
  stmt = select(Unit).where(Unit.booklet_id.in_(list(booklet_ids))).order_by(Unit.id.asc())
  return list((await session.execute(stmt)).scalars().all())


async def find_incomplete_responses_by_unit_ids(session: AsyncSession, unit_ids: Sequence[int]) -> list[Response]:
  """Return responses eligible for automatic coding."""
  if not unit_ids:
    return []
  eligible = or_(Response.status.in_([int(status) for status in AUTO_CODING_INPUT_STATUSES]), Response.status_v1 == int(ResponseStatus.DERIVE_PENDING))
  stmt = select(Response).where(Response.unit_id.in_(list(unit_ids)), eligible).order_by(Response.id.asc())
  return list((await session.execute(stmt)).scalars().all())


async def find_files_by_ids(session: AsyncSession, workspace_id: int, file_ids: Sequence[str]) -> list[StoredFile]:
  if not file_ids:
    return []
  stmt = select(FileUpload.file_id, FileUpload.filename, FileUpload.data).where(FileUpload.workspace_id == workspace_id, FileUpload.file_id.in_(list(file_ids)))
  rows = (await session.execute(stmt)).all()
  return [StoredFile(file_id=row[0], filename=row[1], data=row[2] or "") for row in rows]


def _scheme_source_types(files: Sequence[FileUpload]) -> dict[str, dict[str, str]]:
  source_types: dict[str, dict[str, str]] = {}
  for scheme_file in files:
    unit_name = scheme_file.file_id.removesuffix(".VOCS")
    scheme = CodingScheme.parse_document(scheme_file.data, source=scheme_file.file_id)
    source_types[unit_name] = {coding.id: coding.source_type for coding in scheme.variable_codings}
  return source_types


def parse_unit_variables(xml_content: str, scheme_source_types: dict[str, dict[str, str]] | None = None) -> tuple[str, set[str]] | None:
  """Return the unit id and its codeable base variable aliases from a unit definition."""
  root = ET.fromstring(xml_content.encode("utf-8"))
  unit_name = (root.findtext("Metadata/Id") or "").strip()
  if not unit_name:
    return None
  source_types = (scheme_source_types or {}).get(unit_name, {})
  variables: set[str] = set()
  for variable in root.findall("BaseVariables/Variable"):
    alias = variable.get("alias")
    if not alias or variable.get("type") == "no-value":
      continue
    if source_types.get(alias) == "BASE_NO_VALUE":
      continue
    variables.add(alias)
  return unit_name, variables


async def get_unit_variable_map(session: AsyncSession, workspace_id: int) -> dict[str, set[str]]:
  """Map each unit name to the variables its definition declares."""
  unit_files = (await session.execute(select(FileUpload).where(FileUpload.workspace_id == workspace_id, FileUpload.file_type == UNIT_FILE_TYPE))).scalars().all()
  scheme_files = (await session.execute(select(FileUpload).where(FileUpload.workspace_id == workspace_id, FileUpload.file_type == RESOURCE_FILE_TYPE, FileUpload.file_id.like("%.VOCS")))).scalars().all()
  source_types = _scheme_source_types(scheme_files)

  unit_variables: dict[str, set[str]] = {}
  for unit_file in unit_files:
    try:
      parsed = parse_unit_variables(unit_file.data, source_types)
    except ET.ParseError as exc:
      logger.warning("Error parsing unit file %s: %s", unit_file.file_id, exc)
      continue
    if parsed is not None:
      unit_variables[parsed[0]] = parsed[1]
  return unit_variables


async def get_response_matching_mode(session: AsyncSession, workspace_id: int) -> list[ResponseMatchingFlag]:
  setting = await session.get(WorkspaceSetting, (workspace_id, matching_mode_setting_key(workspace_id)))
  if setting is None:
    return []
  return parse_matching_flags(setting.content)


async def get_variable_cases_in_jobs(session: AsyncSession, workspace_id: int) -> dict[str, int]:
  """Count distinct responses already assigned to coding jobs per unit::variable."""
  stmt = (
    select(CodingJobUnit.unit_name, CodingJobUnit.variable_id, func.count(func.distinct(CodingJobUnit.response_id)))
    .join(CodingJob, CodingJobUnit.coding_job_id == CodingJob.id)
    .where(CodingJob.workspace_id == workspace_id)
    .group_by(CodingJobUnit.unit_name, CodingJobUnit.variable_id)
  )
  rows = (await session.execute(stmt)).all()
  return {f"{row[0]}::{row[1]}": int(row[2]) for row in rows}
