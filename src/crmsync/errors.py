"""
Error taxonomy for sync runs.

Only ConfigurationError is allowed to end a pipeline run early. Every other
sync error is caught at record or branch granularity and turned into a
counter on the run's history row.
"""
from typing import Optional


class ConfigurationError(RuntimeError):
    """Raised when remote credentials are missing at pipeline start."""


class RemoteAPIError(RuntimeError):
    """Raised on a non-success response, transport failure or undecodable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RecordMappingError(ValueError):
    """Raised when a remote record has no natural id or cannot be mapped."""


class PersistenceError(RuntimeError):
    """Raised when writing a single record to the local store fails."""


class ConcurrencyRejection(RuntimeError):
    """Raised when a manual run is requested while the job is executing."""

    def __init__(self, job_name: str):
        super().__init__(f"Job '{job_name}' is already executing")
        self.job_name = job_name


class UnknownJob(LookupError):
    """Raised when a job name is not registered with the scheduler."""

    def __init__(self, job_name: str):
        super().__init__(f"Job '{job_name}' is not registered")
        self.job_name = job_name


class RunAlreadyFinalized(RuntimeError):
    """Raised when a history row that already left 'running' is finalized again."""
