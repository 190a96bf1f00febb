"""
Job Event Emission
==================

Event system for job dispatch and lifecycle changes. Each function builds a
standardised event payload, logs it and returns it so callers (and tests)
can forward it to whatever transport is wired in front of the service.

Events emitted:
  - job.created
  - job.broadcasted
  - job.assigned
  - job.offer_rejected
  - job.provider_cancelled
  - job.status_changed
  - job.cancelled
  - job.completed
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

logger = logging.getLogger(__name__)


def _build_event(
    event_type: str,
    job_id: uuid.UUID,
    *,
    data: dict[str, Any] | None = None,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Construct a standardised event payload."""
    return {
        "event_type": event_type,
        "job_id": str(job_id),
        "actor_id": str(actor_id) if actor_id else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data or {},
    }


def emit_job_created(
    job_id: uuid.UUID,
    customer_id: uuid.UUID,
    reference_number: str,
    role_needed: str,
) -> dict[str, Any]:
    """Emit event when a new job is created."""
    event = _build_event(
        "job.created",
        job_id,
        actor_id=customer_id,
        data={
            "reference_number": reference_number,
            "role_needed": role_needed,
        },
    )
    logger.info("Event emitted: %s for job %s", event["event_type"], job_id)
    return event


def emit_job_broadcasted(
    job_id: uuid.UUID,
    round_number: int,
    provider_ids: Sequence[uuid.UUID],
) -> dict[str, Any]:
    """Emit event when a broadcast round offers the job to providers."""
    event = _build_event(
        "job.broadcasted",
        job_id,
        data={
            "round_number": round_number,
            "provider_ids": [str(pid) for pid in provider_ids],
        },
    )
    logger.info(
        "Event emitted: %s for job %s (round %d, %d providers)",
        event["event_type"],
        job_id,
        round_number,
        len(provider_ids),
    )
    return event


def emit_job_assigned(
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
) -> dict[str, Any]:
    """Emit event when a provider wins the job."""
    event = _build_event(
        "job.assigned",
        job_id,
        actor_id=provider_id,
        data={"provider_id": str(provider_id)},
    )
    logger.info(
        "Event emitted: %s for job %s -> provider %s",
        event["event_type"],
        job_id,
        provider_id,
    )
    return event


def emit_offer_rejected(
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
    remaining_offers: int,
) -> dict[str, Any]:
    """Emit event when a provider declines an open offer."""
    event = _build_event(
        "job.offer_rejected",
        job_id,
        actor_id=provider_id,
        data={"remaining_offers": remaining_offers},
    )
    logger.info(
        "Event emitted: %s for job %s by provider %s (%d offers left)",
        event["event_type"],
        job_id,
        provider_id,
        remaining_offers,
    )
    return event


def emit_provider_cancelled(
    job_id: uuid.UUID,
    provider_id: uuid.UUID,
    reason: str | None = None,
) -> dict[str, Any]:
    """Emit event when the assigned provider hands the job back."""
    event = _build_event(
        "job.provider_cancelled",
        job_id,
        actor_id=provider_id,
        data={"reason": reason},
    )
    logger.info(
        "Event emitted: %s for job %s by provider %s",
        event["event_type"],
        job_id,
        provider_id,
    )
    return event


def emit_job_status_changed(
    job_id: uuid.UUID,
    old_status: str,
    new_status: str,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Emit event when a job transitions between states."""
    event = _build_event(
        "job.status_changed",
        job_id,
        actor_id=actor_id,
        data={
            "old_status": old_status,
            "new_status": new_status,
        },
    )
    logger.info(
        "Event emitted: %s for job %s (%s -> %s)",
        event["event_type"],
        job_id,
        old_status,
        new_status,
    )
    return event


def emit_job_cancelled(
    job_id: uuid.UUID,
    cancelled_by: uuid.UUID | None,
    reason: str | None = None,
    previous_provider_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Emit event when a job is cancelled."""
    event = _build_event(
        "job.cancelled",
        job_id,
        actor_id=cancelled_by,
        data={
            "reason": reason,
            "previous_provider_id": (
                str(previous_provider_id) if previous_provider_id else None
            ),
        },
    )
    logger.info("Event emitted: %s for job %s", event["event_type"], job_id)
    return event


def emit_job_completed(
    job_id: uuid.UUID,
    provider_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Emit event when a job reaches the completed state."""
    event = _build_event(
        "job.completed",
        job_id,
        actor_id=provider_id,
        data={"provider_id": str(provider_id) if provider_id else None},
    )
    logger.info("Event emitted: %s for job %s", event["event_type"], job_id)
    return event
