"""Firebase Cloud Messaging integration for job offers."""

from .pushService import OfferPushReport, build_offer_message, send_offer_push

__all__ = [
    "OfferPushReport",
    "build_offer_message",
    "send_offer_push",
]
