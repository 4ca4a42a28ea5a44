"""Domain entities exchanged by the store, the channels and the API."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from pokenotify.common.status import DeliveryStatus, TunnelType


def as_utc(value: datetime) -> datetime:
    """Tag naive datetimes as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Poke(BaseModel):
    """A scheduled notification. `id` is assigned by the store."""

    id: str | None = None
    tunnel: TunnelType
    to: str = Field(min_length=1)
    # Only channels with a subject concept (email) read it.
    subject: str | None = None
    body: str
    date_to_send: datetime
    expiry: datetime
    claimed_by: str | None = None
    claimed_at: datetime | None = None

    @field_validator("date_to_send", "expiry", "claimed_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @field_validator("subject")
    @classmethod
    def _empty_subject_is_none(cls, value: str | None) -> str | None:
        return value or None


class ArchivedPoke(BaseModel):
    id: str
    tunnel: TunnelType
    to: str
    expired: bool


class Record(BaseModel):
    """Outcome of one send attempt for the poke named by `message_id`."""

    id: str | None = None
    message_id: str | None
    status: DeliveryStatus
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class PokeWriteRequest(BaseModel):
    """Producer payload for create and full update."""

    tunnel: TunnelType
    to: str = Field(min_length=1)
    subject: str | None = None
    body: str
    date_to_send: datetime
    expiry: datetime


class IdsRequest(BaseModel):
    ids: list[str] = Field(min_length=1)
