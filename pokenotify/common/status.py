"""Tunnel tags and the closed delivery-status vocabulary.

Every channel maps its provider's native codes onto `DeliveryStatus`; raw
provider strings are never stored.
"""

from enum import Enum


class TunnelType(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    # Reserved, no channel implements it yet.
    VOICE = "voice"


class DeliveryStatus(str, Enum):
    QUEUED = "Queued"
    DELIVERED = "Delivered"
    UNDELIVERED = "Undelivered"
    # Provider refused the message.
    FAILED = "Failed"
    # Local composition/transport error before the provider saw it.
    ERROR = "Error"


FAILURE_STATUSES: frozenset[DeliveryStatus] = frozenset(
    {DeliveryStatus.UNDELIVERED, DeliveryStatus.FAILED, DeliveryStatus.ERROR}
)

TWILIO_STATUS_MAP: dict[str, DeliveryStatus] = {
    "accepted": DeliveryStatus.QUEUED,
    "scheduled": DeliveryStatus.QUEUED,
    "queued": DeliveryStatus.QUEUED,
    "sending": DeliveryStatus.QUEUED,
    "sent": DeliveryStatus.DELIVERED,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.DELIVERED,
    "undelivered": DeliveryStatus.UNDELIVERED,
    "failed": DeliveryStatus.FAILED,
    "canceled": DeliveryStatus.FAILED,
}


def map_provider_status(provider_status: str | None, mapping: dict[str, DeliveryStatus]) -> DeliveryStatus | None:
    """Return the engine status for a provider code, or None when unknown."""

    if not provider_status:
        return None
    return mapping.get(provider_status.strip().lower())
