"""
FCM delivery of job offers.

Thin wrapper over the Firebase Admin SDK used by the offer notifier. Offers
go out as high-priority multicast messages, chunked to the FCM multicast
limit. A chunk that fails as a whole with a transient error is retried with
exponential backoff; per-device failures inside an accepted chunk are only
counted. Tokens FCM no longer recognises are reported back as stale.

Credentials come from ``settings.firebase_service_account_path`` or
``settings.firebase_credentials_json``. The SDK app is created on first send.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Iterator

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin.exceptions import (
    DeadlineExceededError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)

from towmech.core.config import settings

logger = logging.getLogger(__name__)

MULTICAST_LIMIT = 500
SEND_ATTEMPTS = 3
BACKOFF_SECONDS = 0.5
OFFER_CHANNEL_ID = "towmech_job_offers"

_TRANSIENT_ERRORS = (UnavailableError, InternalError, DeadlineExceededError)
_STALE_TOKEN_ERRORS = (NotFoundError, InvalidArgumentError, messaging.UnregisteredError)


@dataclass
class OfferPushReport:
    """Outcome of pushing one offer to a set of device tokens."""

    delivered: int = 0
    failed: int = 0
    stale_tokens: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def merge(self, other: OfferPushReport) -> None:
        self.delivered += other.delivered
        self.failed += other.failed
        self.stale_tokens.extend(other.stale_tokens)
        self.errors.extend(other.errors)


_app: firebase_admin.App | None = None


def _firebase_app() -> firebase_admin.App:
    global _app
    if _app is not None:
        return _app

    try:
        _app = firebase_admin.get_app()
        return _app
    except ValueError:
        pass

    if settings.firebase_service_account_path:
        cred = credentials.Certificate(settings.firebase_service_account_path)
    elif settings.firebase_credentials_json:
        cred = credentials.Certificate(json.loads(settings.firebase_credentials_json))
    else:
        raise RuntimeError(
            "FCM credentials missing: set FIREBASE_SERVICE_ACCOUNT_PATH "
            "or FIREBASE_CREDENTIALS_JSON"
        )

    _app = firebase_admin.initialize_app(cred)
    logger.info("Firebase Admin app initialised for offer delivery")
    return _app


def _chunks(tokens: list[str]) -> Iterator[list[str]]:
    for start in range(0, len(tokens), MULTICAST_LIMIT):
        yield tokens[start : start + MULTICAST_LIMIT]


def build_offer_message(
    tokens: list[str],
    title: str,
    body: str,
    data: dict[str, str],
) -> messaging.MulticastMessage:
    """Build the multicast for one chunk of provider devices."""
    return messaging.MulticastMessage(
        tokens=tokens,
        notification=messaging.Notification(title=title, body=body),
        data={key: str(value) for key, value in data.items()},
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                channel_id=OFFER_CHANNEL_ID,
                sound="default",
            ),
        ),
        apns=messaging.APNSConfig(
            headers={"apns-priority": "10"},
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default")),
        ),
    )


async def _send_chunk(message: messaging.MulticastMessage) -> messaging.BatchResponse:
    attempt = 1
    while True:
        try:
            return await asyncio.to_thread(messaging.send_each_for_multicast, message)
        except _TRANSIENT_ERRORS as exc:
            if attempt >= SEND_ATTEMPTS:
                raise
            delay = BACKOFF_SECONDS * 2 ** (attempt - 1)
            logger.warning(
                "FCM unavailable (attempt %d/%d), retrying in %.1fs: %s",
                attempt,
                SEND_ATTEMPTS,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
            attempt += 1


def _report_for(tokens: list[str], response: messaging.BatchResponse) -> OfferPushReport:
    report = OfferPushReport()
    for token, outcome in zip(tokens, response.responses):
        if outcome.success:
            report.delivered += 1
            continue
        report.failed += 1
        report.errors.append(str(outcome.exception))
        if isinstance(outcome.exception, _STALE_TOKEN_ERRORS):
            report.stale_tokens.append(token)
    return report


async def send_offer_push(
    tokens: list[str],
    title: str,
    body: str,
    data: dict[str, str],
) -> OfferPushReport:
    """Push one offer to every token.

    A chunk that still fails after its retries counts all of its tokens as
    failed; the remaining chunks are still sent.
    """
    report = OfferPushReport()
    if not tokens:
        return report

    _firebase_app()

    for chunk in _chunks(tokens):
        message = build_offer_message(chunk, title, body, data)
        try:
            response = await _send_chunk(message)
        except Exception as exc:
            logger.error("FCM chunk of %d offers failed: %s", len(chunk), exc)
            report.failed += len(chunk)
            report.errors.append(str(exc))
            continue
        report.merge(_report_for(chunk, response))

    if report.stale_tokens:
        logger.warning("FCM reported %d stale device tokens", len(report.stale_tokens))
    return report
