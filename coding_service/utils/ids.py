"""Identifier utilities."""

from __future__ import annotations

import re
import uuid

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


def generate_job_id() -> str:
  """Return a new background job identifier."""
  return str(uuid.uuid4())


def sanitize_name_part(raw: str | None) -> str:
  """Replace characters that are unsafe in job names with underscores."""
  return _UNSAFE_NAME_CHARS.sub("_", raw or "")


def generate_coding_job_name(coder_name: str, item_name: str, variable_id: str, case_count: int) -> str:
  """Build a traceable coding job name from coder, item and case count."""
  return f"{sanitize_name_part(coder_name)}_{sanitize_name_part(item_name)}_{sanitize_name_part(variable_id)}_{case_count}"
