"""
Error hierarchy for the AAP provisioner.

Error Hierarchy:
- ProvisionerError: base for everything raised on purpose
  - ConfigurationInvalidError: static configuration rejected before any remote call
  - ConfigurationMissingError: required local connection data is absent
  - RemoteRejectedError: controller answered non-2xx or with a malformed body
  - AAPConnectionError: controller unreachable or the HTTP call timed out
  - NotFoundError: a named lookup (e.g. credential type) had no match
  - JobFailedError: the launched job ended in a failed state
  - JobTimeoutError: the job did not finish within the configured budget
  - ProvisioningCancelledError: the run was cancelled from outside

Usage:
    from aap_provisioner.core.errors import RemoteRejectedError

    raise RemoteRejectedError("failed to create inventory", status_code=400, body=resp.text)
"""

from typing import Optional


class ProvisionerError(Exception):
    """Base class for expected provisioner errors."""

    kind = "error"


class ConfigurationInvalidError(ProvisionerError):
    """Configuration failed validation."""

    kind = "configuration_invalid"


class ConfigurationMissingError(ProvisionerError):
    """Required local discovery data is absent."""

    kind = "configuration_missing"


class RemoteRejectedError(ProvisionerError):
    """
    Remote call returned a non-success status or an unusable body.

    Carries the HTTP status code (0 when the status was fine but the body
    could not be used) and the raw body for diagnostics.
    """

    kind = "remote_rejected"

    def __init__(self, message: str, status_code: int = 0, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class AAPConnectionError(ProvisionerError):
    """Cannot reach the controller, or the request timed out."""

    kind = "connection"


class NotFoundError(ProvisionerError):
    """Named lookup had no match."""

    kind = "not_found"


class JobFailedError(ProvisionerError):
    """Job reached a failed terminal state (or its status could not be read)."""

    kind = "job_failed"

    def __init__(self, message: str, job_id: int = 0, diagnostics: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id
        self.diagnostics = diagnostics


class JobTimeoutError(ProvisionerError):
    """Job did not reach a terminal state in time."""

    kind = "timeout"

    def __init__(self, message: str, job_id: int = 0):
        super().__init__(message)
        self.job_id = job_id


class ProvisioningCancelledError(ProvisionerError):
    """External cancellation was observed."""

    kind = "cancelled"
