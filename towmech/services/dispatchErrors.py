"""
Dispatch Errors
===============

Exception taxonomy shared by the dispatch services. Route handlers translate
these into HTTP responses at the request boundary; nothing in the dispatch
core retries on any of them.

  - JobValidationError         -- malformed job requirements (422)
  - NoProvidersAvailableError  -- creation dry-run found nobody (422)
  - AssignmentConflictError    -- lost the accept race or not offered (409)
  - IllegalTransitionError     -- lifecycle forbids the change (409)
  - JobNotFoundError / ProviderNotFoundError / OfferNotFoundError (404)
  - NotAssignedProviderError / NotJobOwnerError (403)
"""

from __future__ import annotations

import uuid

from towmech.models.job import JobStatus


class JobValidationError(Exception):
    """Raised when a job's requirements are incomplete or inconsistent."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class NoProvidersAvailableError(Exception):
    """Raised when no provider could currently service a new job."""

    def __init__(self, role_needed: str) -> None:
        self.role_needed = role_needed
        super().__init__(
            f"No available {role_needed} providers near the pickup location."
        )


class AssignmentConflictError(Exception):
    """Raised when an accept does not win the job."""

    def __init__(
        self,
        job_id: uuid.UUID,
        provider_id: uuid.UUID,
        current_status: JobStatus | None = None,
    ) -> None:
        self.job_id = job_id
        self.provider_id = provider_id
        self.current_status = current_status
        super().__init__(
            "Job already accepted by another provider or not available to you."
        )


class IllegalTransitionError(Exception):
    """Raised when a job status transition is not allowed."""

    def __init__(self, current_status: JobStatus, reason: str) -> None:
        self.current_status = current_status
        self.reason = reason
        super().__init__(reason)


class JobNotFoundError(Exception):
    def __init__(self, job_id: uuid.UUID) -> None:
        self.job_id = job_id
        super().__init__(f"Job with id '{job_id}' not found.")


class ProviderNotFoundError(Exception):
    def __init__(self, provider_id: uuid.UUID) -> None:
        self.provider_id = provider_id
        super().__init__(f"Provider with id '{provider_id}' not found.")


class OfferNotFoundError(Exception):
    """Raised when a provider responds to an offer they do not currently hold."""

    def __init__(self, job_id: uuid.UUID, provider_id: uuid.UUID) -> None:
        self.job_id = job_id
        self.provider_id = provider_id
        super().__init__(
            f"Provider '{provider_id}' has no open offer for job '{job_id}'."
        )


class NotAssignedProviderError(Exception):
    def __init__(self, job_id: uuid.UUID, provider_id: uuid.UUID) -> None:
        self.job_id = job_id
        self.provider_id = provider_id
        super().__init__(
            f"Provider '{provider_id}' is not assigned to job '{job_id}'."
        )


class NotJobOwnerError(Exception):
    def __init__(self, job_id: uuid.UUID, customer_id: uuid.UUID) -> None:
        self.job_id = job_id
        self.customer_id = customer_id
        super().__init__(
            f"Customer '{customer_id}' does not own job '{job_id}'."
        )
