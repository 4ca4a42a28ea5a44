"""Transactional persistence for pokes, archived pokes and audit records.

Every public operation runs in its own session. An exception anywhere inside
the `with` block closes the session without commit, so multi-row operations
(batch delete, archive, claim) are all-or-nothing.
"""

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pokenotify.common.errors import NotFoundError, StoreError
from pokenotify.common.logging import logger
from pokenotify.services.notify.models import ArchivedPokeRow, PokeRow, RecordRow
from pokenotify.services.notify.schemas import ArchivedPoke, Poke, Record, as_utc

LIST_LIMIT = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PokeStore(Protocol):
    """Storage contract the channels and the dispatcher depend on."""

    def create(self, poke: Poke) -> Poke: ...
    def delete(self, *ids: str) -> None: ...
    def update(self, poke: Poke) -> Poke: ...
    def get(self, *ids: str) -> list[Poke]: ...
    def list_to_send(self) -> list[Poke]: ...
    def list_expired(self) -> list[Poke]: ...
    def archive(self, poke_id: str) -> ArchivedPoke: ...
    def get_archived(self, *ids: str) -> list[ArchivedPoke]: ...
    def delete_archived(self, *ids: str) -> None: ...
    def create_record(self, record: Record) -> Record: ...
    def get_record(self, message_id: str) -> list[Record]: ...
    def claim_to_send(self, owner: str, limit: int = LIST_LIMIT, lease_seconds: int = 300) -> list[Poke]: ...
    def release_claim(self, poke_id: str, owner: str) -> bool: ...


def _to_poke(row: PokeRow) -> Poke:
    return Poke(
        id=row.id,
        tunnel=row.tunnel,
        to=row.to,
        subject=row.subject,
        body=row.body,
        date_to_send=row.date_to_send,
        expiry=row.expiry,
        claimed_by=row.claimed_by,
        claimed_at=row.claimed_at,
    )


def _to_archived(row: ArchivedPokeRow) -> ArchivedPoke:
    return ArchivedPoke(id=row.id, tunnel=row.tunnel, to=row.to, expired=row.expired)


def _to_record(row: RecordRow) -> Record:
    return Record(id=row.id, message_id=row.message_id, status=row.status, timestamp=row.timestamp)


class SqlPokeStore:
    """`PokeStore` over a SQLAlchemy session factory."""

    def __init__(self, session_factory, clock: Callable[[], datetime] = utcnow) -> None:
        self.session_factory = session_factory
        self.clock = clock

    @contextmanager
    def _session(self, op: str, ids: Sequence[str] = ()) -> Iterator[Session]:
        try:
            with self.session_factory() as db:
                yield db
        except StoreError:
            raise
        except (SQLAlchemyError, ValueError) as exc:
            # ValueError covers rows that no longer validate as entities.
            raise StoreError(op, ids, exc) from exc

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _lock_all(self, db: Session, model, op: str, ids: Sequence[str]) -> list:
        """Load every row named by `ids` for update, or raise NotFound for the missing ones."""

        rows = {
            row.id: row
            for row in db.execute(select(model).where(model.id.in_(ids)).with_for_update()).scalars()
        }
        missing = [poke_id for poke_id in ids if poke_id not in rows]
        if missing:
            raise NotFoundError(op, missing, "not found")
        return [rows[poke_id] for poke_id in ids]

    def create(self, poke: Poke) -> Poke:
        """Persist a new poke under a freshly assigned id."""

        with self._session("create") as db:
            row = PokeRow(
                tunnel=poke.tunnel.value,
                to=poke.to,
                subject=poke.subject,
                body=poke.body,
                date_to_send=poke.date_to_send,
                expiry=poke.expiry,
            )
            db.add(row)
            db.commit()
            return poke.model_copy(update={"id": row.id, "claimed_by": None, "claimed_at": None})

    def delete(self, *ids: str) -> None:
        """Cancel queued pokes. Either every id is removed or none is."""

        ids = list(dict.fromkeys(ids))
        with self._session("delete", ids) as db:
            for row in self._lock_all(db, PokeRow, "delete", ids):
                db.delete(row)
            db.commit()

    def update(self, poke: Poke) -> Poke:
        """Replace the stored document of an existing poke.

        Claim fields belong to the dispatcher and are left as stored.
        """

        ids = [poke.id] if poke.id else []
        with self._session("update", ids) as db:
            row = db.get(PokeRow, poke.id, with_for_update=True) if poke.id else None
            if row is None:
                raise NotFoundError("update", ids, "not found")
            row.tunnel = poke.tunnel.value
            row.to = poke.to
            row.subject = poke.subject
            row.body = poke.body
            row.date_to_send = poke.date_to_send
            row.expiry = poke.expiry
            db.commit()
            return _to_poke(row)

    def get(self, *ids: str) -> list[Poke]:
        ids = list(ids)
        with self._session("get", ids) as db:
            rows = {row.id: row for row in db.execute(select(PokeRow).where(PokeRow.id.in_(ids))).scalars()}
            missing = [poke_id for poke_id in ids if poke_id not in rows]
            if missing:
                raise NotFoundError("get", missing, "not found")
            return [_to_poke(rows[poke_id]) for poke_id in ids]

    def list_to_send(self) -> list[Poke]:
        """Pokes whose send time has passed, expired ones included."""

        with self._session("list_to_send") as db:
            rows = db.execute(
                select(PokeRow)
                .where(PokeRow.date_to_send < self._now())
                .order_by(PokeRow.date_to_send)
                .limit(LIST_LIMIT)
            ).scalars()
            return [_to_poke(row) for row in rows]

    def list_expired(self) -> list[Poke]:
        with self._session("list_expired") as db:
            rows = db.execute(
                select(PokeRow).where(PokeRow.expiry < self._now()).order_by(PokeRow.expiry).limit(LIST_LIMIT)
            ).scalars()
            return [_to_poke(row) for row in rows]

    def archive(self, poke_id: str) -> ArchivedPoke:
        """Move a poke to the archive in one transaction.

        `expired` compares the clock at archive time with the poke's expiry.
        """

        with self._session("archive", [poke_id]) as db:
            row = db.get(PokeRow, poke_id, with_for_update=True)
            if row is None:
                raise NotFoundError("archive", [poke_id], "not found")
            archived = ArchivedPokeRow(
                id=row.id,
                tunnel=row.tunnel,
                to=row.to,
                expired=self._now() > as_utc(row.expiry),
            )
            db.add(archived)
            db.flush()
            db.delete(row)
            db.commit()
            logger.info("poke archived poke_id=%s expired=%s", poke_id, archived.expired)
            return _to_archived(archived)

    def get_archived(self, *ids: str) -> list[ArchivedPoke]:
        ids = list(ids)
        with self._session("get_archived", ids) as db:
            rows = {
                row.id: row
                for row in db.execute(select(ArchivedPokeRow).where(ArchivedPokeRow.id.in_(ids))).scalars()
            }
            missing = [poke_id for poke_id in ids if poke_id not in rows]
            if missing:
                raise NotFoundError("get_archived", missing, "not found")
            return [_to_archived(rows[poke_id]) for poke_id in ids]

    def delete_archived(self, *ids: str) -> None:
        """Purge archived pokes, all or nothing."""

        ids = list(dict.fromkeys(ids))
        with self._session("delete_archived", ids) as db:
            for row in self._lock_all(db, ArchivedPokeRow, "delete_archived", ids):
                db.delete(row)
            db.commit()

    def create_record(self, record: Record) -> Record:
        ids = [record.message_id] if record.message_id else []
        with self._session("create_record", ids) as db:
            row = RecordRow(message_id=record.message_id, status=record.status.value, timestamp=record.timestamp)
            db.add(row)
            db.commit()
            return record.model_copy(update={"id": row.id})

    def get_record(self, message_id: str) -> list[Record]:
        """Every audit record for one poke, oldest first."""

        with self._session("get_record", [message_id]) as db:
            rows = db.execute(
                select(RecordRow).where(RecordRow.message_id == message_id).order_by(RecordRow.timestamp, RecordRow.id)
            ).scalars()
            return [_to_record(row) for row in rows]

    def claim_to_send(self, owner: str, limit: int = LIST_LIMIT, lease_seconds: int = 300) -> list[Poke]:
        """Claim due pokes for `owner` so concurrent dispatchers skip them.

        A claim older than `lease_seconds` is considered abandoned and may be
        taken over. Each row is claimed with a compare-and-swap update; rows
        another dispatcher won in the meantime are left out.
        """

        now = self._now()
        stale_before = now - timedelta(seconds=lease_seconds)
        claimable = or_(PokeRow.claimed_by.is_(None), PokeRow.claimed_at < stale_before)
        with self._session("claim_to_send") as db:
            candidates = db.execute(
                select(PokeRow.id)
                .where(PokeRow.date_to_send < now, claimable)
                .order_by(PokeRow.date_to_send)
                .limit(min(limit, LIST_LIMIT))
                .with_for_update(skip_locked=True)
            ).scalars().all()
            claimed = []
            for poke_id in candidates:
                result = db.execute(
                    update(PokeRow)
                    .where(PokeRow.id == poke_id, claimable)
                    .values(claimed_by=owner, claimed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(poke_id)
            rows = db.execute(
                select(PokeRow)
                .where(PokeRow.id.in_(claimed))
                .order_by(PokeRow.date_to_send)
                .execution_options(populate_existing=True)
            ).scalars().all()
            pokes = [_to_poke(row) for row in rows]
            db.commit()
            return pokes

    def release_claim(self, poke_id: str, owner: str) -> bool:
        """Drop `owner`'s claim so the poke is picked up again; False if not held."""

        with self._session("release_claim", [poke_id]) as db:
            result = db.execute(
                update(PokeRow)
                .where(PokeRow.id == poke_id, PokeRow.claimed_by == owner)
                .values(claimed_by=None, claimed_at=None)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1
