"""Notify service process: wiring of store, channels, dispatcher and API."""

from pokenotify.common.config import settings
from pokenotify.common.db import build_engine, build_session_factory
from pokenotify.common.logging import configure_logging, logger
from pokenotify.common.startup import log_startup_config
from pokenotify.common.tracing import instrument_app, setup_tracing
from pokenotify.services.notify.api import create_app
from pokenotify.services.notify.channels import ChannelRegistry, GmailChannel, SmsChannel
from pokenotify.services.notify.service import NotifyService
from pokenotify.services.notify.store import SqlPokeStore

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "DATABASE_URL",
        "DISPATCH_USE_CLAIMS",
        "DISPATCH_POLL_SECONDS",
        "TWILIO_ACCOUNT_SID",
        "SMS_SENDER",
        "GMAIL_SENDER",
    ],
)


def build_channels() -> ChannelRegistry:
    """Register every channel whose provider credentials are configured."""

    registry = ChannelRegistry()
    if settings.sms_sender and settings.twilio_account_sid:
        registry.register(SmsChannel(settings.sms_sender))
    else:
        logger.warning("sms channel disabled: SMS_SENDER or TWILIO_ACCOUNT_SID unset")
    if settings.gmail_sender and settings.gmail_service_account_file:
        registry.register(
            GmailChannel.from_service_account_file(settings.gmail_service_account_file, settings.gmail_sender)
        )
    else:
        logger.warning("email channel disabled: GMAIL_SENDER or GMAIL_SERVICE_ACCOUNT_FILE unset")
    return registry


engine = build_engine(settings.database_url)
store = SqlPokeStore(build_session_factory(engine))
service = NotifyService(store, build_channels(), service_name=settings.service_name)

app = create_app(store, service)
instrument_app(app)
