"""Structured JSON logging with poke context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from pokenotify.common.config import settings


poke_id_ctx: ContextVar[str] = ContextVar("poke_id", default="")
tunnel_ctx: ContextVar[str] = ContextVar("tunnel", default="")


class ContextFilter(logging.Filter):
    """Inject service name and the poke being handled into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.poke_id = poke_id_ctx.get()
        record.tunnel = tunnel_ctx.get()
        return True


def configure_logging() -> None:
    """Configure root logger once per process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter("%(asctime)s %(levelname)s %(service_name)s %(poke_id)s %(tunnel)s %(message)s")
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("pokenotify")
