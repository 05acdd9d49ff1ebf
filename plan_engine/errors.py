"""
Error types raised by the payment plan engine.

ValidationError subclasses ValueError so entry points can keep treating
any ValueError as a 400-class input problem.
"""

from dataclasses import dataclass


class ValidationError(ValueError):
    """Bad caller input for a single operation. State is left unchanged."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(LookupError):
    """A record does not exist for the caller's tenant."""


class TransientStorageError(ConnectionError):
    """A retryable storage condition (dropped connection, timeout)."""


class FatalJobFailure(RuntimeError):
    """The job process itself could not start or complete."""

    def __init__(self, message: str, job_run_id: str | None = None):
        super().__init__(message)
        self.job_run_id = job_run_id


@dataclass
class PartialTenantFailure:
    """One tenant's sweep failed; recorded and skipped, never raised."""

    agency_id: str
    error_type: str
    message: str

    def __str__(self) -> str:
        return f"agency {self.agency_id}: {self.error_type}: {self.message}"
