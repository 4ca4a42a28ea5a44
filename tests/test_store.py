"""Store contract: ids, all-or-nothing batches, selection predicates, archive."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pokenotify.common.errors import NotFoundError, StoreError
from pokenotify.common.status import DeliveryStatus, TunnelType
from pokenotify.services.notify import store as store_module
from pokenotify.services.notify.models import ArchivedPokeRow
from pokenotify.services.notify.schemas import Record


def test_create_assigns_id_and_get_returns_it(store, make_poke):
    created = store.create(make_poke(subject="", body="hello"))

    assert created.id
    fetched = store.get(created.id)[0]
    assert fetched.id == created.id
    assert fetched.tunnel == TunnelType.SMS
    assert fetched.body == "hello"
    assert fetched.subject is None
    assert fetched.date_to_send == created.date_to_send
    assert fetched.expiry.tzinfo is not None


def test_get_fails_whole_call_when_any_id_missing(store, make_poke):
    poke = store.create(make_poke())

    with pytest.raises(NotFoundError) as excinfo:
        store.get(poke.id, "missing")
    assert excinfo.value.ids == ["missing"]
    assert "get" in str(excinfo.value)


def test_batch_delete_is_all_or_nothing(store, make_poke):
    """Unknown id in the batch must leave the known one untouched."""

    kept = store.create(make_poke())

    with pytest.raises(NotFoundError):
        store.delete(kept.id, "does-not-exist")

    assert store.get(kept.id)[0].id == kept.id


def test_batch_delete_removes_every_listed_poke(store, make_poke):
    a = store.create(make_poke())
    b = store.create(make_poke())

    store.delete(a.id, b.id)

    with pytest.raises(NotFoundError):
        store.get(a.id)
    with pytest.raises(NotFoundError):
        store.get(b.id)


def test_update_replaces_full_document(store, make_poke, clock):
    poke = store.create(make_poke(tunnel="email", subject="Reminder", body="old"))
    edited = poke.model_copy(update={"subject": None, "body": "new", "date_to_send": clock.now + timedelta(days=1)})

    store.update(edited)

    fetched = store.get(poke.id)[0]
    assert fetched.subject is None
    assert fetched.body == "new"
    assert fetched.date_to_send == clock.now + timedelta(days=1)


def test_update_unknown_id_is_not_found(store, make_poke):
    with pytest.raises(NotFoundError):
        store.update(make_poke().model_copy(update={"id": "ghost"}))


def test_list_to_send_boundary_is_strict(store, make_poke, clock):
    at_now = store.create(make_poke(send_in=timedelta(0)))
    just_before = store.create(make_poke(send_in=timedelta(microseconds=-1)))

    ids = [p.id for p in store.list_to_send()]

    assert just_before.id in ids
    assert at_now.id not in ids


def test_list_expired_boundary_is_strict(store, make_poke):
    at_now = store.create(make_poke(expire_in=timedelta(0)))
    just_before = store.create(make_poke(expire_in=timedelta(microseconds=-1)))

    ids = [p.id for p in store.list_expired()]

    assert just_before.id in ids
    assert at_now.id not in ids


def test_list_to_send_includes_expired_pokes(store, make_poke):
    expired = store.create(make_poke(send_in=timedelta(hours=-2), expire_in=timedelta(hours=-1)))

    assert expired.id in [p.id for p in store.list_to_send()]


def test_list_expired_ignores_send_time(store, make_poke):
    future_but_expired = store.create(make_poke(send_in=timedelta(hours=1), expire_in=timedelta(hours=-1)))
    live = store.create(make_poke())

    ids = [p.id for p in store.list_expired()]

    assert future_but_expired.id in ids
    assert live.id not in ids
    assert future_but_expired.id not in [p.id for p in store.list_to_send()]


def test_selection_queries_are_capped(store, make_poke, monkeypatch):
    monkeypatch.setattr(store_module, "LIST_LIMIT", 2)
    for _ in range(3):
        store.create(make_poke(expire_in=timedelta(seconds=-1)))

    assert len(store.list_to_send()) == 2
    assert len(store.list_expired()) == 2


def test_archive_moves_poke_and_keeps_id(store, make_poke):
    poke = store.create(make_poke())

    archived = store.archive(poke.id)

    assert archived.id == poke.id
    assert archived.tunnel == TunnelType.SMS
    assert archived.to == poke.to
    assert archived.expired is False
    assert store.get_archived(poke.id)[0] == archived
    with pytest.raises(NotFoundError):
        store.get(poke.id)


def test_archive_computes_expired_at_archive_time(store, make_poke, clock):
    poke = store.create(make_poke(expire_in=timedelta(seconds=1)))
    assert poke.id not in [p.id for p in store.list_expired()]

    clock.advance(seconds=2)
    archived = store.archive(poke.id)

    assert archived.expired is True


def test_archive_unknown_id_is_not_found(store):
    with pytest.raises(NotFoundError):
        store.archive("ghost")


def test_archive_rolls_back_when_delete_step_fails(store, make_poke, monkeypatch):
    """Failure between the archive insert and the poke delete leaves no partial state."""

    poke = store.create(make_poke())

    def failing_delete(self, instance):
        raise SQLAlchemyError("injected failure")

    monkeypatch.setattr(Session, "delete", failing_delete)
    with pytest.raises(StoreError):
        store.archive(poke.id)
    monkeypatch.undo()

    assert store.get(poke.id)[0].id == poke.id
    with pytest.raises(NotFoundError):
        store.get_archived(poke.id)


def test_archive_conflict_leaves_live_poke(store, make_poke, session_factory):
    poke = store.create(make_poke())
    with session_factory() as db:
        db.add(ArchivedPokeRow(id=poke.id, tunnel="sms", to=poke.to, expired=False))
        db.commit()

    with pytest.raises(StoreError) as excinfo:
        store.archive(poke.id)

    assert excinfo.value.op == "archive"
    assert store.get(poke.id)[0].id == poke.id


def test_delete_archived_is_all_or_nothing(store, make_poke):
    a = store.create(make_poke())
    b = store.create(make_poke())
    store.archive(a.id)
    store.archive(b.id)

    with pytest.raises(NotFoundError):
        store.delete_archived(a.id, "ghost")
    assert len(store.get_archived(a.id, b.id)) == 2

    store.delete_archived(a.id, b.id)
    with pytest.raises(NotFoundError):
        store.get_archived(a.id)


def test_records_accumulate_and_sort_by_timestamp(store, clock):
    later = store.create_record(
        Record(message_id="m1", status=DeliveryStatus.DELIVERED, timestamp=clock.now + timedelta(seconds=5))
    )
    earlier = store.create_record(Record(message_id="m1", status=DeliveryStatus.QUEUED, timestamp=clock.now))
    store.create_record(Record(message_id="other", status=DeliveryStatus.ERROR, timestamp=clock.now))

    records = store.get_record("m1")

    assert [r.id for r in records] == [earlier.id, later.id]
    assert [r.status for r in records] == [DeliveryStatus.QUEUED, DeliveryStatus.DELIVERED]
    assert store.get_record("nobody") == []


def test_claim_prevents_second_dispatcher_until_lease_expires(store, make_poke, clock):
    poke = store.create(make_poke())

    first = store.claim_to_send("dispatcher-a", lease_seconds=60)
    second = store.claim_to_send("dispatcher-b", lease_seconds=60)

    assert [p.id for p in first] == [poke.id]
    assert first[0].claimed_by == "dispatcher-a"
    assert second == []

    clock.advance(seconds=61)
    taken_over = store.claim_to_send("dispatcher-b", lease_seconds=60)
    assert [p.claimed_by for p in taken_over] == ["dispatcher-b"]


def test_release_claim_only_for_owner(store, make_poke):
    poke = store.create(make_poke())
    store.claim_to_send("dispatcher-a")

    assert store.release_claim(poke.id, "dispatcher-b") is False
    assert store.release_claim(poke.id, "dispatcher-a") is True
    assert store.get(poke.id)[0].claimed_by is None
    assert [p.id for p in store.claim_to_send("dispatcher-b")] == [poke.id]


def test_update_keeps_claim_fields(store, make_poke):
    poke = store.create(make_poke())
    store.claim_to_send("dispatcher-a")

    store.update(poke.model_copy(update={"body": "edited"}))

    assert store.get(poke.id)[0].claimed_by == "dispatcher-a"


def test_database_failure_is_wrapped_with_operation(store, engine, make_poke):
    with engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE pokes")

    with pytest.raises(StoreError) as excinfo:
        store.create(make_poke())
    assert excinfo.value.op == "create"
    assert isinstance(excinfo.value.__cause__, SQLAlchemyError)
