"""Dispatcher: sends due pokes, archives them, and retires expired ones.

One pass is synchronous; `run_forever` drives passes from the API process.
Without claims delivery is at-least-once: two dispatchers may select the same
due poke before either archives it. With `use_claims` each due poke is leased
to one dispatcher before it is sent.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

from pokenotify.common.config import settings
from pokenotify.common.errors import ChannelError, ConfigurationError, NotFoundError, StoreError
from pokenotify.common.logging import logger, poke_id_ctx, tunnel_ctx
from pokenotify.common.metrics import archived_total, dispatch_pass_seconds
from pokenotify.common.status import DeliveryStatus
from pokenotify.services.notify.channels import ChannelRegistry, LoggingChannel
from pokenotify.services.notify.schemas import ArchivedPoke, Poke, as_utc
from pokenotify.services.notify.store import PokeStore, utcnow


class NotifyService:
    """Drives pokes from the queue through a channel into the archive."""

    def __init__(
        self,
        store: PokeStore,
        channels: ChannelRegistry,
        service_name: str = "notify",
        use_claims: bool | None = None,
        lease_seconds: int | None = None,
        owner: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.channels = channels
        self.service_name = service_name
        self.use_claims = settings.dispatch_use_claims if use_claims is None else use_claims
        self.lease_seconds = lease_seconds if lease_seconds is not None else settings.claim_lease_seconds
        self.owner = owner or f"{service_name}-{uuid4()}"
        self.clock = clock

    def _select_due(self) -> list[Poke]:
        if self.use_claims:
            return self.store.claim_to_send(self.owner, lease_seconds=self.lease_seconds)
        return self.store.list_to_send()

    def _archive(self, poke_id: str) -> ArchivedPoke:
        archived = self.store.archive(poke_id)
        archived_total.labels(service=self.service_name, expired=str(archived.expired).lower()).inc()
        return archived

    def _release(self, poke: Poke) -> None:
        if not self.use_claims:
            return
        try:
            self.store.release_claim(poke.id, self.owner)
        except StoreError as exc:
            # The lease expires on its own; another pass picks the poke up.
            logger.error("claim release failed poke_id=%s error=%s", poke.id, exc)

    def _dispatch_one(self, poke: Poke, summary: dict[str, int]) -> None:
        if as_utc(self.clock()) > poke.expiry:
            self._archive(poke.id)
            summary["expired"] += 1
            return
        try:
            channel = LoggingChannel(self.channels.resolve(poke.tunnel), self.store)
            record = channel.send(poke)
        except ChannelError as exc:
            if exc.status == DeliveryStatus.FAILED:
                # Provider refused the message; resending would be refused again.
                logger.warning("send rejected poke_id=%s tunnel=%s error=%s", poke.id, poke.tunnel.value, exc)
                summary["rejected"] += 1
                self._archive(poke.id)
                return
            logger.warning("send failed poke_id=%s tunnel=%s error=%s", poke.id, poke.tunnel.value, exc)
            summary["failed"] += 1
            self._release(poke)
            return
        except ConfigurationError as exc:
            logger.warning("send failed poke_id=%s tunnel=%s error=%s", poke.id, poke.tunnel.value, exc)
            summary["failed"] += 1
            self._release(poke)
            return
        summary["sent"] += 1
        logger.info("poke sent poke_id=%s status=%s", poke.id, record.status.value)
        self._archive(poke.id)

    def dispatch_due(self) -> dict[str, int]:
        """Send every due poke once and archive the ones that went out.

        Pokes already past their expiry are archived without a send, and so
        are pokes the provider rejected (Failed). Any other failure leaves the
        poke queued for the next pass; one bad poke never stops the others.
        """

        pokes = self._select_due()
        summary = {"selected": len(pokes), "sent": 0, "failed": 0, "rejected": 0, "expired": 0}
        for poke in pokes:
            poke_token = poke_id_ctx.set(poke.id or "")
            tunnel_token = tunnel_ctx.set(poke.tunnel.value)
            try:
                self._dispatch_one(poke, summary)
            except NotFoundError:
                logger.info("poke vanished before archive poke_id=%s", poke.id)
            except StoreError as exc:
                logger.error("store error during dispatch poke_id=%s error=%s", poke.id, exc)
            except Exception as exc:
                logger.exception("dispatch error poke_id=%s error=%s", poke.id, exc)
                summary["failed"] += 1
                self._release(poke)
            finally:
                poke_id_ctx.reset(poke_token)
                tunnel_ctx.reset(tunnel_token)
        return summary

    def archive_expired(self) -> int:
        """Archive every expired poke, sent or not; returns how many moved."""

        archived = 0
        for poke in self.store.list_expired():
            try:
                self._archive(poke.id)
            except NotFoundError:
                logger.info("expired poke already gone poke_id=%s", poke.id)
                continue
            archived += 1
        return archived

    def run_once(self) -> dict[str, int]:
        """One dispatcher pass; the expired sweep runs even if sending failed."""

        with dispatch_pass_seconds.labels(service=self.service_name).time():
            try:
                summary = self.dispatch_due()
            except Exception as exc:
                logger.exception("dispatch of due pokes failed: %s", exc)
                summary = {"selected": 0, "sent": 0, "failed": 0, "rejected": 0, "expired": 0}
            summary["archived_expired"] = self.archive_expired()
        return summary

    async def run_forever(self, poll_seconds: float | None = None) -> None:
        """Run dispatcher passes until cancelled."""

        interval = settings.dispatch_poll_seconds if poll_seconds is None else poll_seconds
        while True:
            try:
                summary = await asyncio.to_thread(self.run_once)
                if summary["selected"] or summary["archived_expired"]:
                    logger.info("dispatch pass summary=%s", summary)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("dispatch pass failed: %s", exc)
            await asyncio.sleep(interval)
