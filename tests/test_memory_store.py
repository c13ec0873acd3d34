import threading
from datetime import timedelta

import pytest

from outbox_relay.adapters.store.memory import InMemoryInboxStore, InMemoryOutboxStore
from outbox_relay.domain.errors import DuplicateRecordError
from outbox_relay.domain.models.events import PROCESSED, SENT, InboxRecord, OutboxRecord


def _record(event_key=None, entity_table="orders", **fields):
    return OutboxRecord(id=None, event_type="order.created", payload="{}", event_key=event_key, entity_table=entity_table, **fields)


def test_insert_assigns_increasing_ids(clock):
    store = InMemoryOutboxStore(clock)
    first = store.insert(_record())
    second = store.insert(_record())
    assert (first.id, second.id) == (1, 2)
    assert first.created_at == clock.now


def test_unique_per_table_and_key(clock):
    store = InMemoryOutboxStore(clock)
    store.insert(_record("k1"))
    store.insert(_record("k1", entity_table="invoices"))
    with pytest.raises(DuplicateRecordError):
        store.insert(_record("k1"))
    assert len(store.all()) == 2


def test_due_ids_filters_status_time_and_table(clock):
    store = InMemoryOutboxStore(clock)
    due = store.insert(_record())
    store.insert(_record(next_attempt_at=clock.now + timedelta(minutes=5)))
    store.insert(_record(status=SENT))
    other = store.insert(_record(entity_table="invoices"))

    assert store.due_ids(10, clock.now) == [due.id, other.id]
    assert store.due_ids(10, clock.now, entity_table="orders") == [due.id]
    assert store.due_ids(1, clock.now) == [due.id]


def test_try_claim_skips_rows_locked_by_another_transaction(clock):
    store = InMemoryOutboxStore(clock)
    row = store.insert(_record())

    with store.transaction() as tx:
        assert tx.try_claim(row.id) is not None
        with store.transaction() as other:
            assert other.try_claim(row.id) is None

    with store.transaction() as tx:
        assert tx.try_claim(row.id) is not None


def test_updates_apply_on_commit_and_vanish_on_rollback(clock):
    store = InMemoryOutboxStore(clock)
    row = store.insert(_record())

    with pytest.raises(RuntimeError):
        with store.transaction() as tx:
            tx.try_claim(row.id)
            tx.update(row.id, status=SENT)
            raise RuntimeError("boom")
    assert store.get(row.id).status == "pending"

    with store.transaction() as tx:
        tx.try_claim(row.id)
        assert tx.update(row.id, attempts=3) == 1
        assert store.get(row.id).attempts == 0
    assert store.get(row.id).attempts == 3
    assert store.update(999, status=SENT) == 0


def test_due_for_update_partitions_rows_between_transactions(clock):
    store = InMemoryOutboxStore(clock)
    for _ in range(4):
        store.insert(_record())

    with store.transaction() as first:
        a = first.due_for_update(2, clock.now)
        with store.transaction() as second:
            b = second.due_for_update(10, clock.now)
    assert [r.id for r in a] == [1, 2]
    assert [r.id for r in b] == [3, 4]


def test_concurrent_claimers_never_share_a_row(clock):
    store = InMemoryOutboxStore(clock)
    for _ in range(50):
        store.insert(_record())

    claimed = []
    guard = threading.Lock()
    barrier = threading.Barrier(4)

    def claimer():
        barrier.wait()
        for record_id in store.due_ids(50, clock.now):
            with store.transaction() as tx:
                row = tx.try_claim(record_id)
                if row is None or row.status != "pending":
                    continue
                tx.update(record_id, status=SENT)
                with guard:
                    claimed.append(record_id)

    threads = [threading.Thread(target=claimer) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(claimed) == list(range(1, 51))


def test_inbox_rollback_discards_insert(clock):
    store = InMemoryInboxStore(clock)
    with pytest.raises(RuntimeError):
        with store.transaction() as tx:
            tx.insert(InboxRecord(id=None, source="s", event_key="k"))
            raise RuntimeError("boom")
    assert store.get_by_key("s", "k") is None


def test_inbox_claim_blocking_waits_for_the_holder(clock):
    store = InMemoryInboxStore(clock)
    with store.transaction() as tx:
        row = tx.insert(InboxRecord(id=None, source="s", event_key="k"))

    seen = []
    holding = threading.Event()
    release = threading.Event()

    def holder():
        with store.transaction() as tx:
            tx.claim_blocking(row.id)
            holding.set()
            release.wait(5)
            tx.update(row.id, status=PROCESSED)

    def waiter():
        holding.wait(5)
        with store.transaction() as tx:
            seen.append(tx.claim_blocking(row.id).status)

    t1, t2 = threading.Thread(target=holder), threading.Thread(target=waiter)
    t1.start()
    t2.start()
    holding.wait(5)
    release.set()
    t1.join(5)
    t2.join(5)

    assert seen == [PROCESSED]


def _processed_inbox_row(store, source, key, processed_at):
    with store.transaction() as tx:
        row = tx.insert(InboxRecord(id=None, source=source, event_key=key))
    store.update(row.id, status=PROCESSED, processed_at=processed_at)
    return row


def test_inbox_delete_processed(clock):
    store = InMemoryInboxStore(clock)
    old = _processed_inbox_row(store, "s", "a", clock.now - timedelta(days=40))
    _processed_inbox_row(store, "s", "b", clock.now)
    _processed_inbox_row(store, "other", "c", clock.now - timedelta(days=40))

    assert store.delete_processed("s", clock.now - timedelta(days=30)) == 1
    assert store.get(old.id) is None
    assert len(store.all()) == 2


def test_discarded_rows_release_their_lock_entries(clock):
    store = InMemoryInboxStore(clock)
    with pytest.raises(RuntimeError):
        with store.transaction() as tx:
            tx.insert(InboxRecord(id=None, source="s", event_key="gone"))
            raise RuntimeError("boom")
    _processed_inbox_row(store, "s", "old", clock.now - timedelta(days=40))

    store.delete_processed("s", clock.now)

    assert store.all() == []
    assert store._row_locks == {}
