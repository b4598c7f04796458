"""Domain exceptions raised by the coding services."""

from __future__ import annotations


class CodingServiceError(Exception):
  """Base class for coding service failures."""


class InvalidDistributionRequestError(CodingServiceError, ValueError):
  """Raised when a distribution request cannot be allocated."""


class CodingJobNotFoundError(CodingServiceError, LookupError):
  """Raised when a coding job id does not exist."""

  def __init__(self, coding_job_id: int) -> None:
    super().__init__(f"Coding job with ID {coding_job_id} not found")
    self.coding_job_id = coding_job_id


class CodingJobUnitNotFoundError(CodingServiceError, LookupError):
  """Raised when a progress entry does not match any coding job unit."""
