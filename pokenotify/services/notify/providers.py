"""Thin wire client for the Twilio Messages API.

Only the call the SMS channel needs is implemented: send one message and
hand back the provider's status and update time.
"""

from datetime import datetime
from email.utils import parsedate_to_datetime

import httpx
from pydantic import BaseModel

from pokenotify.common.config import settings
from pokenotify.common.errors import ConfigurationError
from pokenotify.common.logging import logger


class SmsResponse(BaseModel):
    """Subset of the Twilio message resource returned on create."""

    sid: str | None = None
    status: str | None = None
    date_updated: str | None = None
    error_code: int | None = None
    error_message: str | None = None

    def date_updated_as_datetime(self) -> datetime:
        """Parse Twilio's RFC 2822 timestamp; raises TypeError/ValueError when unusable."""

        return parsedate_to_datetime(self.date_updated)


class TwilioException(Exception):
    """Twilio rejected the request; mirrors its JSON error body."""

    def __init__(self, status_code: int, code: int | None, message: str, more_info: str = "") -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        self.more_info = more_info
        super().__init__(f"twilio {status_code} code={code}: {message}")


class TwilioClient:
    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        base_url: str = "https://api.twilio.com",
        http_client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not account_sid or not auth_token:
            raise ConfigurationError("twilio client needs an account sid and auth token")
        self.account_sid = account_sid
        self._http = http_client or httpx.Client(base_url=base_url, auth=(account_sid, auth_token), timeout=timeout)

    @classmethod
    def from_settings(cls) -> "TwilioClient":
        return cls(settings.twilio_account_sid, settings.twilio_auth_token, base_url=settings.twilio_base_url)

    def send_sms(self, sender: str, to: str, body: str, callback_url: str, account_sid: str) -> SmsResponse:
        """Create one outbound message.

        Raises `TwilioException` when Twilio answers with an error status and
        `httpx.HTTPError` when the request never got an answer.
        """

        data = {"From": sender, "To": to, "Body": body}
        if callback_url:
            data["StatusCallback"] = callback_url
        resp = self._http.post(f"/2010-04-01/Accounts/{account_sid}/Messages.json", data=data)
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if resp.status_code >= 400:
            payload = payload if isinstance(payload, dict) else {}
            raise TwilioException(
                resp.status_code,
                payload.get("code"),
                payload.get("message") or resp.text,
                payload.get("more_info") or "",
            )
        if not isinstance(payload, dict):
            # Twilio took the message; its status is unknown, not failed.
            logger.warning("unreadable twilio reply status_code=%s", resp.status_code)
            return SmsResponse()
        return SmsResponse.model_validate(payload)
