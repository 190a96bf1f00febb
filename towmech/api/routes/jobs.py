"""
Job API Routes
==============

REST endpoints for job creation, dispatch and lifecycle management.

Routes:
  POST   /api/v1/jobs                               -- Create a new job
  GET    /api/v1/jobs/available?provider_id=        -- Open offers for a provider
  GET    /api/v1/jobs/customer/{customer_id}/active  -- Customer's live jobs
  GET    /api/v1/jobs/customer/{customer_id}/history -- Customer's finished jobs
  GET    /api/v1/jobs/{job_id}                      -- Job detail with audit trail
  POST   /api/v1/jobs/{job_id}/payment-confirmed    -- Booking fee paid, broadcast
  POST   /api/v1/jobs/{job_id}/broadcast            -- Run a broadcast round
  PATCH  /api/v1/jobs/{job_id}/accept               -- Provider accepts an offer
  PATCH  /api/v1/jobs/{job_id}/reject               -- Provider declines an offer
  PATCH  /api/v1/jobs/{job_id}/status               -- Start or complete work
  PATCH  /api/v1/jobs/{job_id}/cancel               -- Customer or admin cancels
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, HTTPException, Query, status

from towmech.api.deps import (
    DBSession,
    OfferNotifierDep,
    PaymentGateDep,
    ProviderDirectoryDep,
)
from towmech.api.schemas.job import (
    BroadcastOut,
    JobCancelRequest,
    JobCreateRequest,
    JobDetailOut,
    JobListResponse,
    JobOut,
    JobStatusUpdateRequest,
    ProviderActionRequest,
)
from towmech.services import (
    assignmentArbiter,
    broadcastCoordinator,
    jobService,
    rebroadcastManager,
)
from towmech.services.dispatchErrors import (
    AssignmentConflictError,
    IllegalTransitionError,
    JobNotFoundError,
    JobValidationError,
    NoProvidersAvailableError,
    NotAssignedProviderError,
    NotJobOwnerError,
    OfferNotFoundError,
)
from towmech.services.jobStateManager import ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


# ---------------------------------------------------------------------------
# Error mapping helpers
# ---------------------------------------------------------------------------

def conflict(exc: AssignmentConflictError | IllegalTransitionError) -> HTTPException:
    """Build a 409 carrying the job's current status so clients can resync."""
    current = exc.current_status.value if exc.current_status is not None else None
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"message": str(exc), "current_status": current},
    )


def not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def forbidden(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


def _broadcast_out(result: broadcastCoordinator.BroadcastResult) -> BroadcastOut:
    return BroadcastOut(
        broadcasted=result.broadcasted,
        message=result.message,
        provider_ids=result.provider_ids,
        job=JobOut.model_validate(result.job),
    )


# ---------------------------------------------------------------------------
# POST /api/v1/jobs -- Create a new job
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=JobOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new job",
    description=(
        "Validates the job requirements and runs the matching pipeline as a "
        "dry run. The job is only created (in 'created' status) if at least "
        "one provider could service it right now. Broadcasting starts once "
        "the booking fee is confirmed."
    ),
)
async def create_job(
    db: DBSession,
    directory: ProviderDirectoryDep,
    body: JobCreateRequest,
) -> JobOut:
    try:
        job = await jobService.create_job(
            db,
            customer_id=body.customer_id,
            title=body.title,
            description=body.description,
            role_needed=body.role_needed,
            pickup=body.pickup.model_dump(),
            dropoff=body.dropoff.model_dump() if body.dropoff else None,
            tow_truck_type_needed=body.tow_truck_type_needed,
            vehicle_type=body.vehicle_type,
            provider_payout_cents=body.provider_payout_cents,
            currency=body.currency.upper(),
            directory=directory,
        )
    except (JobValidationError, NoProvidersAvailableError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )

    return JobOut.model_validate(job)


# ---------------------------------------------------------------------------
# GET /api/v1/jobs/available -- Open offers for one provider
# ---------------------------------------------------------------------------

@router.get(
    "/available",
    response_model=JobListResponse,
    summary="List jobs currently offered to a provider",
)
async def list_available_jobs(
    db: DBSession,
    provider_id: uuid.UUID = Query(..., description="Provider UUID"),
) -> JobListResponse:
    jobs = await jobService.list_available_jobs(db, provider_id)
    return JobListResponse(data=[JobOut.model_validate(j) for j in jobs])


# ---------------------------------------------------------------------------
# GET /api/v1/jobs/customer/{customer_id}/active|history
# ---------------------------------------------------------------------------

@router.get(
    "/customer/{customer_id}/active",
    response_model=JobListResponse,
    summary="List a customer's live jobs",
)
async def list_customer_active_jobs(
    db: DBSession,
    customer_id: uuid.UUID,
) -> JobListResponse:
    jobs = await jobService.get_active_jobs_for_customer(db, customer_id)
    return JobListResponse(data=[JobOut.model_validate(j) for j in jobs])


@router.get(
    "/customer/{customer_id}/history",
    response_model=JobListResponse,
    summary="List a customer's completed and cancelled jobs",
)
async def list_customer_job_history(
    db: DBSession,
    customer_id: uuid.UUID,
) -> JobListResponse:
    jobs = await jobService.get_job_history_for_customer(db, customer_id)
    return JobListResponse(data=[JobOut.model_validate(j) for j in jobs])


# ---------------------------------------------------------------------------
# GET /api/v1/jobs/{job_id} -- Job detail
# ---------------------------------------------------------------------------

@router.get(
    "/{job_id}",
    response_model=JobDetailOut,
    summary="Get job detail",
)
async def get_job(
    db: DBSession,
    job_id: uuid.UUID,
) -> JobDetailOut:
    job = await jobService.get_job(db, job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job with id '{job_id}' not found.",
        )
    return JobDetailOut.model_validate(job)


# ---------------------------------------------------------------------------
# POST /api/v1/jobs/{job_id}/payment-confirmed
# ---------------------------------------------------------------------------

@router.post(
    "/{job_id}/payment-confirmed",
    response_model=BroadcastOut,
    summary="Record the booking fee payment and start broadcasting",
)
async def confirm_payment(
    db: DBSession,
    payment_gate: PaymentGateDep,
    notifier: OfferNotifierDep,
    directory: ProviderDirectoryDep,
    job_id: uuid.UUID,
) -> BroadcastOut:
    try:
        result = await broadcastCoordinator.confirm_payment(
            db,
            job_id,
            payment_gate=payment_gate,
            notifier=notifier,
            directory=directory,
        )
    except JobNotFoundError as exc:
        raise not_found(exc)
    except IllegalTransitionError as exc:
        raise conflict(exc)
    except JobValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )

    return _broadcast_out(result)


# ---------------------------------------------------------------------------
# POST /api/v1/jobs/{job_id}/broadcast
# ---------------------------------------------------------------------------

@router.post(
    "/{job_id}/broadcast",
    response_model=BroadcastOut,
    summary="Run a broadcast round",
    description=(
        "Computes the current eligible providers (excluding providers who "
        "released this job before) and replaces the open offer list. Does "
        "nothing, with broadcasted=false, while the booking fee is unpaid."
    ),
)
async def broadcast_job(
    db: DBSession,
    payment_gate: PaymentGateDep,
    notifier: OfferNotifierDep,
    directory: ProviderDirectoryDep,
    job_id: uuid.UUID,
) -> BroadcastOut:
    try:
        result = await broadcastCoordinator.broadcast_job(
            db,
            job_id,
            payment_gate=payment_gate,
            notifier=notifier,
            directory=directory,
        )
    except JobNotFoundError as exc:
        raise not_found(exc)
    except IllegalTransitionError as exc:
        raise conflict(exc)
    except JobValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )

    return _broadcast_out(result)


# ---------------------------------------------------------------------------
# PATCH /api/v1/jobs/{job_id}/accept
# ---------------------------------------------------------------------------

@router.patch(
    "/{job_id}/accept",
    response_model=JobOut,
    summary="Accept an offered job",
    description=(
        "First-accept-wins. Exactly one of any number of concurrent accepts "
        "succeeds; the others receive 409 with the job's current status."
    ),
)
async def accept_job(
    db: DBSession,
    job_id: uuid.UUID,
    body: ProviderActionRequest,
) -> JobOut:
    try:
        job = await assignmentArbiter.accept_job(db, job_id, body.provider_id)
    except JobNotFoundError as exc:
        raise not_found(exc)
    except AssignmentConflictError as exc:
        raise conflict(exc)

    return JobOut.model_validate(job)


# ---------------------------------------------------------------------------
# PATCH /api/v1/jobs/{job_id}/reject
# ---------------------------------------------------------------------------

@router.patch(
    "/{job_id}/reject",
    response_model=JobOut,
    summary="Decline an offered job",
)
async def reject_job(
    db: DBSession,
    job_id: uuid.UUID,
    body: ProviderActionRequest,
) -> JobOut:
    try:
        job = await rebroadcastManager.reject_offer(db, job_id, body.provider_id)
    except (JobNotFoundError, OfferNotFoundError) as exc:
        raise not_found(exc)
    except IllegalTransitionError as exc:
        raise conflict(exc)

    return JobOut.model_validate(job)


# ---------------------------------------------------------------------------
# PATCH /api/v1/jobs/{job_id}/status
# ---------------------------------------------------------------------------

@router.patch(
    "/{job_id}/status",
    response_model=JobOut,
    summary="Start or complete work on a job",
)
async def update_job_status(
    db: DBSession,
    job_id: uuid.UUID,
    body: JobStatusUpdateRequest,
) -> JobOut:
    try:
        job = await jobService.update_job_status(
            db,
            job_id,
            body.new_status,
            actor_id=body.actor_id,
            actor_type=body.actor_type,
        )
    except JobNotFoundError as exc:
        raise not_found(exc)
    except IllegalTransitionError as exc:
        raise conflict(exc)
    except NotAssignedProviderError as exc:
        raise forbidden(exc)

    return JobOut.model_validate(job)


# ---------------------------------------------------------------------------
# PATCH /api/v1/jobs/{job_id}/cancel
# ---------------------------------------------------------------------------

@router.patch(
    "/{job_id}/cancel",
    response_model=JobOut,
    summary="Cancel a job",
)
async def cancel_job(
    db: DBSession,
    job_id: uuid.UUID,
    body: JobCancelRequest,
) -> JobOut:
    try:
        job = await jobService.cancel_job(
            db,
            job_id,
            cancelled_by=body.cancelled_by,
            actor_type=ActorType(body.actor_type),
            reason=body.reason,
        )
    except JobNotFoundError as exc:
        raise not_found(exc)
    except IllegalTransitionError as exc:
        raise conflict(exc)
    except NotJobOwnerError as exc:
        raise forbidden(exc)

    return JobOut.model_validate(job)
