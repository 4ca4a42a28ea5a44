"""Startup-time helpers for safe config logging."""

import os

from sqlalchemy.engine import make_url

from pokenotify.common.logging import logger


def _safe_env(name: str) -> str:
    """Return env value with redaction for secrets and database passwords."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(secret in name for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN", "SID"]):
        return "<redacted>"
    if name.endswith("DATABASE_URL"):
        try:
            return make_url(value).render_as_string(hide_password=True)
        except Exception:
            return "<unparseable>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)
