"""
Offer Notifier
==============

Delivers "new job near you" offers to the providers of a broadcast round.

Delivery is fire-and-forget. ``request_offer_delivery`` builds the payload
synchronously, schedules the push on the running event loop and returns
immediately, so a slow or failing push provider can never hold up or undo
a broadcast. Failures inside the scheduled task are logged by its done
callback.

``OfferNotifier`` is a Protocol so the dispatch services can be given any
delivery channel; ``FcmOfferNotifier`` sends through Firebase Cloud
Messaging.

Services never notify directly. A round queues its offers on the database
session with ``queue_offer_delivery``; whoever owns the transaction calls
``release_offer_deliveries`` after the commit, or
``discard_offer_deliveries`` after a rollback. Providers are therefore
never offered a round that was not persisted.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from towmech.core.config import settings
from towmech.integrations.fcm import pushService
from towmech.models.job import Job
from towmech.models.provider import Provider

logger = logging.getLogger(__name__)


# Deliveries still running; held so tasks are not garbage collected mid-send
_pending_deliveries: set[asyncio.Task] = set()

# Session.info key for offers waiting on their transaction
QUEUED_OFFERS_KEY = "towmech.queued_offers"


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OfferNotification:
    job_id: uuid.UUID
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    tokens: tuple[str, ...] = ()


def _format_amount(amount_cents: int, currency: str) -> str:
    return f"{currency} {amount_cents / 100:,.2f}"


def build_offer_notification(
    job: Job,
    providers: Sequence[Provider],
) -> OfferNotification:
    """Build the offer payload for one broadcast round.

    Providers without a registered device token are left out of ``tokens``.
    """
    details = [
        f"Tow Type: {job.tow_truck_type_needed or 'Any'}",
        f"Vehicle: {job.vehicle_type or 'Any'}",
        f"Pickup: {job.pickup_address_text or 'See map'}",
    ]
    if job.provider_payout_cents is not None:
        details.append(f"Payout: {_format_amount(job.provider_payout_cents, job.currency)}")
    body = f"{job.title}\n" + " | ".join(details)

    data = {
        "type": "job_offer",
        "job_id": str(job.id),
        "reference_number": job.reference_number,
        "role_needed": job.role_needed.value,
        "pickup_address": job.pickup_address_text or "",
        "dropoff_address": job.dropoff_address_text or "",
        "tow_truck_type": job.tow_truck_type_needed or "",
        "vehicle_type": job.vehicle_type or "",
        "provider_payout_cents": (
            str(job.provider_payout_cents) if job.provider_payout_cents is not None else ""
        ),
        "currency": job.currency,
    }

    tokens = tuple(p.fcm_token for p in providers if p.fcm_token)

    return OfferNotification(
        job_id=job.id,
        title=settings.offer_notification_title,
        body=body,
        data=data,
        tokens=tokens,
    )


# ---------------------------------------------------------------------------
# Notifier interface
# ---------------------------------------------------------------------------

class OfferNotifier(Protocol):
    def request_offer_delivery(self, job: Job, providers: Sequence[Provider]) -> None:
        ...


def _on_delivery_done(task: asyncio.Task) -> None:
    _pending_deliveries.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Offer delivery task %s failed: %s", task.get_name(), exc)


class FcmOfferNotifier:
    """Sends offers as FCM multicast pushes."""

    def request_offer_delivery(self, job: Job, providers: Sequence[Provider]) -> None:
        if not providers:
            return

        notification = build_offer_notification(job, providers)

        if not settings.push_notifications_enabled:
            logger.info(
                "Push disabled; offer for job %s not sent to %d providers",
                job.id,
                len(providers),
            )
            return

        if not notification.tokens:
            logger.warning(
                "No device tokens for the %d providers offered job %s",
                len(providers),
                job.id,
            )
            return

        task = asyncio.create_task(
            self._deliver(notification),
            name=f"offer-delivery-{job.id}",
        )
        _pending_deliveries.add(task)
        task.add_done_callback(_on_delivery_done)

    async def _deliver(self, notification: OfferNotification) -> None:
        report = await pushService.send_offer_push(
            list(notification.tokens),
            notification.title,
            notification.body,
            notification.data,
        )
        logger.info(
            "Offer for job %s delivered: %d sent, %d failed, %d stale tokens",
            notification.job_id,
            report.delivered,
            report.failed,
            len(report.stale_tokens),
        )


# ---------------------------------------------------------------------------
# Post-commit queue
# ---------------------------------------------------------------------------

def queue_offer_delivery(
    db: AsyncSession,
    notifier: OfferNotifier,
    job: Job,
    providers: Sequence[Provider],
) -> None:
    """Hold a round's offers on the session until its transaction commits."""
    if not providers:
        return
    db.info.setdefault(QUEUED_OFFERS_KEY, []).append((notifier, job, list(providers)))


def queued_offer_count(db: AsyncSession) -> int:
    return len(db.info.get(QUEUED_OFFERS_KEY, ()))


def discard_offer_deliveries(db: AsyncSession, keep: int = 0) -> None:
    """Drop offers queued after the first ``keep``; their round was rolled back."""
    queued = db.info.get(QUEUED_OFFERS_KEY)
    if not queued or len(queued) <= keep:
        return
    logger.info("Dropping %d offer deliveries from a rolled back transaction", len(queued) - keep)
    del queued[keep:]


def release_offer_deliveries(db: AsyncSession) -> int:
    """Hand every queued offer to its notifier. Call only after a commit.

    Returns the number of rounds handed over. A notifier that fails to
    schedule is logged and skipped.
    """
    queued = db.info.pop(QUEUED_OFFERS_KEY, [])
    for notifier, job, providers in queued:
        try:
            notifier.request_offer_delivery(job, providers)
        except Exception:
            logger.exception("Offer delivery for job %s could not be scheduled", job.id)
    return len(queued)


async def drain_pending_deliveries(timeout: float = 5.0) -> None:
    """Wait for in-flight offer deliveries, e.g. on application shutdown."""
    if not _pending_deliveries:
        return
    pending = list(_pending_deliveries)
    _, still_running = await asyncio.wait(pending, timeout=timeout)
    for task in still_running:
        task.cancel()
    if still_running:
        logger.warning("Cancelled %d offer deliveries on shutdown", len(still_running))


default_notifier = FcmOfferNotifier()
