"""
Provider API Routes
===================

Endpoints called by the provider app.

Routes:
  PATCH  /api/v1/providers/jobs/{job_id}/cancel   -- Assigned provider releases a job
  PATCH  /api/v1/providers/{provider_id}/status   -- Online state, location, capabilities
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, HTTPException, status

from towmech.api.deps import (
    DBSession,
    OfferNotifierDep,
    PaymentGateDep,
    ProviderDirectoryDep,
)
from towmech.api.routes.jobs import conflict, forbidden, not_found
from towmech.api.schemas.job import BroadcastOut, JobOut, ProviderCancelRequest
from towmech.api.schemas.provider import ProviderOut, ProviderStatusUpdateRequest
from towmech.services import providerService, rebroadcastManager
from towmech.services.dispatchErrors import (
    IllegalTransitionError,
    JobNotFoundError,
    JobValidationError,
    NotAssignedProviderError,
    ProviderNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["Providers"])


# ---------------------------------------------------------------------------
# PATCH /api/v1/providers/jobs/{job_id}/cancel
# ---------------------------------------------------------------------------

@router.patch(
    "/jobs/{job_id}/cancel",
    response_model=BroadcastOut,
    summary="Release an assigned job",
    description=(
        "The assigned provider gives the job back (for example after a "
        "vehicle breakdown). The provider is permanently excluded from this "
        "job and a new broadcast round runs immediately."
    ),
)
async def cancel_assignment(
    db: DBSession,
    payment_gate: PaymentGateDep,
    notifier: OfferNotifierDep,
    directory: ProviderDirectoryDep,
    job_id: uuid.UUID,
    body: ProviderCancelRequest,
) -> BroadcastOut:
    try:
        result = await rebroadcastManager.cancel_assignment(
            db,
            job_id,
            body.provider_id,
            reason=body.reason,
            payment_gate=payment_gate,
            notifier=notifier,
            directory=directory,
        )
    except JobNotFoundError as exc:
        raise not_found(exc)
    except NotAssignedProviderError as exc:
        raise forbidden(exc)
    except IllegalTransitionError as exc:
        raise conflict(exc)
    except JobValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )

    return BroadcastOut(
        broadcasted=result.broadcasted,
        message=result.message,
        provider_ids=result.provider_ids,
        job=JobOut.model_validate(result.job),
    )


# ---------------------------------------------------------------------------
# PATCH /api/v1/providers/{provider_id}/status
# ---------------------------------------------------------------------------

@router.patch(
    "/{provider_id}/status",
    response_model=ProviderOut,
    summary="Report provider presence",
)
async def update_provider_status(
    db: DBSession,
    provider_id: uuid.UUID,
    body: ProviderStatusUpdateRequest,
) -> ProviderOut:
    try:
        provider = await providerService.update_presence(
            db,
            provider_id,
            is_online=body.is_online,
            latitude=body.latitude,
            longitude=body.longitude,
            tow_truck_types=body.tow_truck_types,
            car_types_supported=body.car_types_supported,
            fcm_token=body.fcm_token,
        )
    except ProviderNotFoundError as exc:
        raise not_found(exc)

    return ProviderOut.model_validate(provider)
