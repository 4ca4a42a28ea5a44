"""Notify persistence models: active pokes, archived pokes, audit records.

The row primary key is the entity id; it is never duplicated as a column.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pokenotify.common.db import Base


class PokeRow(Base):
    """A queued notification waiting for its send time."""

    __tablename__ = "pokes"
    __table_args__ = (
        Index("ix_pokes_date_to_send", "date_to_send"),
        Index("ix_pokes_expiry", "expiry"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    tunnel: Mapped[str] = mapped_column(String)
    to: Mapped[str] = mapped_column(String)
    subject: Mapped[str | None] = mapped_column(String, nullable=True)
    body: Mapped[str] = mapped_column(Text)
    date_to_send: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expiry: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    claimed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ArchivedPokeRow(Base):
    """Terminal form of a poke; shares the id of the poke it replaced."""

    __tablename__ = "archived_pokes"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tunnel: Mapped[str] = mapped_column(String)
    to: Mapped[str] = mapped_column(String)
    expired: Mapped[bool] = mapped_column(Boolean)


class RecordRow(Base):
    """Append-only outcome of one send attempt."""

    __tablename__ = "poke_records"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    message_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
