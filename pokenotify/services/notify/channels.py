"""Delivery channels (SMS, Gmail) and the record-logging wrapper.

A channel turns a Poke into a Record plus one external side effect, the
provider call. Channels hold no state besides their provider client and
sender identity.
"""

import base64
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Protocol

import httplib2
import httpx
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiClientError
from googleapiclient.errors import HttpError

from pokenotify.common.config import settings
from pokenotify.common.errors import ChannelError, ConfigurationError, StoreError
from pokenotify.common.logging import logger
from pokenotify.common.metrics import record_write_failures_total, retries_total, sends_total
from pokenotify.common.status import (
    FAILURE_STATUSES,
    TWILIO_STATUS_MAP,
    DeliveryStatus,
    TunnelType,
    map_provider_status,
)
from pokenotify.common.tracing import get_tracer
from pokenotify.services.notify.providers import TwilioClient, TwilioException
from pokenotify.services.notify.schemas import Poke, Record
from pokenotify.services.notify.store import PokeStore

GMAIL_SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"


class Channel(Protocol):
    def type(self) -> str: ...
    def identity(self) -> str: ...
    def describe(self) -> str: ...
    def send(self, poke: Poke) -> Record: ...


def describe_channel(tunnel: str, identity: str) -> str:
    return f"service/notify/tunnel/{tunnel}/id/{identity}"


def _record(poke: Poke, status: DeliveryStatus, timestamp: datetime | None = None) -> Record:
    return Record(message_id=poke.id, status=status, timestamp=timestamp or datetime.now(timezone.utc))


class SmsChannel:
    """Sends pokes as text messages through Twilio."""

    def __init__(self, number: str, client: TwilioClient | None = None, callback_url_template: str | None = None) -> None:
        if not number:
            raise ConfigurationError("sms channel needs a sender number")
        self._number = number
        self._client = client if client is not None else TwilioClient.from_settings()
        self._callback_url_template = (
            callback_url_template if callback_url_template is not None else settings.sms_status_callback_url
        )

    def type(self) -> str:
        return TunnelType.SMS.value

    def identity(self) -> str:
        return self._number

    def describe(self) -> str:
        return describe_channel(self.type(), self.identity())

    def _callback_url(self, poke: Poke) -> str:
        if not self._callback_url_template:
            return ""
        return self._callback_url_template.format(poke_id=poke.id)

    def send(self, poke: Poke) -> Record:
        try:
            resp = self._client.send_sms(
                self._number, poke.to, poke.body, self._callback_url(poke), self._client.account_sid
            )
        except TwilioException as exc:
            raise ChannelError(
                f"twilio exception: {exc.more_info or exc.message}", _record(poke, DeliveryStatus.FAILED)
            ) from exc
        except httpx.HTTPError as exc:
            raise ChannelError(f"twilio request failed: {exc}", _record(poke, DeliveryStatus.ERROR)) from exc

        try:
            timestamp = resp.date_updated_as_datetime()
        except (TypeError, ValueError):
            timestamp = None
        status = map_provider_status(resp.status, TWILIO_STATUS_MAP)
        if status is None:
            # Twilio accepted the message; an unknown code is not terminal.
            logger.warning("unmapped twilio status poke_id=%s status=%s", poke.id, resp.status)
            status = DeliveryStatus.QUEUED
        record = _record(poke, status, timestamp)
        if status in FAILURE_STATUSES:
            raise ChannelError(f"twilio reported {resp.status}: {resp.error_message or resp.error_code}", record)
        return record


class GmailChannel:
    """Sends pokes as email through a domain-delegated Gmail account."""

    def __init__(self, sender: str, service=None) -> None:
        self._sender = sender
        self._service = service

    @classmethod
    def from_service_account(cls, subject: str, base_credentials: service_account.Credentials) -> "GmailChannel":
        """Impersonate `subject` with a copy of the delegated credential."""

        try:
            credentials = base_credentials.with_subject(subject)
            service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        except (GoogleAuthError, GoogleApiClientError) as exc:
            raise ConfigurationError(f"could not build gmail service for {subject}: {exc}") from exc
        return cls(subject, service)

    @classmethod
    def from_service_account_file(cls, path: str, subject: str) -> "GmailChannel":
        try:
            base = service_account.Credentials.from_service_account_file(path, scopes=[GMAIL_SEND_SCOPE])
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"invalid gmail service account file {path}: {exc}") from exc
        return cls.from_service_account(subject, base)

    def type(self) -> str:
        return TunnelType.EMAIL.value

    def identity(self) -> str:
        return self._sender

    def describe(self) -> str:
        return describe_channel(self.type(), self.identity())

    def _compose(self, poke: Poke) -> str:
        msg = EmailMessage()
        msg["To"] = poke.to
        msg["From"] = self._sender
        if poke.subject:
            msg["Subject"] = poke.subject
        msg.set_content(poke.body)
        return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")

    def send(self, poke: Poke) -> Record:
        try:
            raw = self._compose(poke)
        except (ValueError, TypeError) as exc:
            raise ChannelError(f"could not compose email: {exc}", _record(poke, DeliveryStatus.ERROR)) from exc

        if self._service is None:
            raise ChannelError("could not get gmail service: got None", _record(poke, DeliveryStatus.ERROR))

        try:
            self._service.users().messages().send(userId=self._sender, body={"raw": raw}).execute()
        except HttpError as exc:
            raise ChannelError(
                f"gmail error: {exc.reason}", _record(poke, DeliveryStatus.UNDELIVERED)
            ) from exc
        except (GoogleApiClientError, GoogleAuthError, httplib2.HttpLib2Error, OSError) as exc:
            raise ChannelError(f"gmail request failed: {exc}", _record(poke, DeliveryStatus.UNDELIVERED)) from exc
        return _record(poke, DeliveryStatus.DELIVERED)


class ChannelRegistry:
    """Channels keyed by the tunnel tag they serve."""

    def __init__(self, channels: Iterable[Channel] = ()) -> None:
        self._channels: dict[str, Channel] = {}
        for channel in channels:
            self.register(channel)

    def register(self, channel: Channel) -> None:
        self._channels[channel.type()] = channel

    def resolve(self, tunnel: str) -> Channel:
        try:
            key = TunnelType(tunnel).value
        except ValueError as exc:
            raise ConfigurationError(f"unknown tunnel {tunnel!r}") from exc
        channel = self._channels.get(key)
        if channel is None:
            raise ConfigurationError(f"no channel registered for tunnel {key}")
        return channel


class LoggingChannel:
    """Wraps a channel so every send leaves an audit record in the store.

    The provider call happens exactly once and outside any transaction; the
    record write is a separate pure-data transaction that is retried on
    store errors. A record that still cannot be written is logged and counted
    but does not turn a delivered poke into a failed send.
    """

    def __init__(
        self,
        channel: Channel,
        store: PokeStore | None,
        write_attempts: int | None = None,
        backoff_seconds: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if store is None:
            raise ConfigurationError("logging channel needs a store")
        self._channel = channel
        self._store = store
        self._write_attempts = max(1, write_attempts or settings.record_write_attempts)
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def type(self) -> str:
        return self._channel.type()

    def identity(self) -> str:
        return self._channel.identity()

    def describe(self) -> str:
        return self._channel.describe()

    def send(self, poke: Poke) -> Record:
        error: ChannelError | None = None
        with get_tracer().start_as_current_span(
            "notify.send", attributes={"poke.id": poke.id or "", "notify.channel": self.describe()}
        ):
            try:
                record = self._channel.send(poke)
            except ChannelError as exc:
                record, error = exc.record, exc
        sends_total.labels(service=settings.service_name, tunnel=self.type(), status=record.status.value).inc()

        record = self._persist(record)
        if error is not None:
            error.record = record
            raise error
        return record

    def _persist(self, record: Record) -> Record:
        for attempt in range(1, self._write_attempts + 1):
            try:
                return self._store.create_record(record)
            except StoreError as exc:
                if attempt == self._write_attempts:
                    logger.error(
                        "record write failed message_id=%s status=%s attempts=%s error=%s",
                        record.message_id,
                        record.status.value,
                        attempt,
                        exc,
                    )
                    record_write_failures_total.labels(service=settings.service_name).inc()
                    return record
                retries_total.labels(service=settings.service_name, dependency="record_store").inc()
                backoff_seconds = self._backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "record write retry message_id=%s attempt=%s backoff_s=%s",
                    record.message_id,
                    attempt,
                    backoff_seconds,
                )
                self._sleep(backoff_seconds)
        return record
