"""
TowMech SQLAlchemy Models
=========================

Central import point for all ORM models. Import ``Base`` from here for
Alembic auto-generation and for the ``create_all`` convenience in tests.

Usage::

    from towmech.models import Base, Job, Provider
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Providers --
from .provider import Provider, ProviderRole, VerificationStatus

# -- Jobs --
from .job import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BookingFeeStatus,
    Job,
    JobBroadcastTarget,
    JobDispatchAttempt,
    JobExcludedProvider,
    JobStatus,
)

__all__ = [
    "ACTIVE_STATUSES",
    "Base",
    "BookingFeeStatus",
    "Job",
    "JobBroadcastTarget",
    "JobDispatchAttempt",
    "JobExcludedProvider",
    "JobStatus",
    "Provider",
    "ProviderRole",
    "TERMINAL_STATUSES",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "VerificationStatus",
]
