"""Change feed history, the snapshot reducer and optimistic views."""

from backoffice.services.change_feed import (
    ENTITY_CUSTOMER,
    ENTITY_ORDER,
    OP_DELETE,
    OP_UPSERT,
    ChangeEvent,
    ChangeFeed,
    OptimisticView,
    Snapshot,
    reduce_events,
)


def test_publish_assigns_increasing_sequence_numbers():
    feed = ChangeFeed()
    first = feed.publish(ENTITY_ORDER, OP_UPSERT, "PED-1", {"id": "PED-1"})
    second = feed.publish(ENTITY_ORDER, OP_DELETE, "PED-1")

    assert second.seq == first.seq + 1
    assert feed.latest_seq == second.seq

    events, complete = feed.events_since(first.seq)
    assert [e.seq for e in events] == [second.seq]
    assert complete is True


def test_events_since_reports_evicted_history():
    feed = ChangeFeed(history=2)
    for n in range(4):
        feed.publish(ENTITY_CUSTOMER, OP_UPSERT, n, {"id": n})

    events, complete = feed.events_since(0)
    assert [e.seq for e in events] == [3, 4]
    assert complete is False

    _, complete = feed.events_since(2)
    assert complete is True


def test_publish_rejects_unknown_entity():
    feed = ChangeFeed()
    try:
        feed.publish("invoice", OP_UPSERT, 1, {})
    except ValueError:
        pass
    else:
        raise AssertionError("expected ValueError")


def test_reduce_events_upserts_and_deletes():
    events = [
        ChangeEvent(seq=1, entity=ENTITY_ORDER, op=OP_UPSERT, entity_id="A", payload={"id": "A", "total_cents": 100}),
        ChangeEvent(seq=2, entity=ENTITY_ORDER, op=OP_UPSERT, entity_id="B", payload={"id": "B"}),
        ChangeEvent(seq=3, entity=ENTITY_ORDER, op=OP_UPSERT, entity_id="A", payload={"id": "A", "total_cents": 200}),
        ChangeEvent(seq=4, entity=ENTITY_ORDER, op=OP_DELETE, entity_id="B"),
    ]
    snapshot = reduce_events(Snapshot(), events)

    assert snapshot.seq == 4
    assert snapshot.orders == {"A": {"id": "A", "total_cents": 200}}


def test_reduce_events_skips_already_applied_events():
    base = Snapshot(seq=5, orders={"A": {"id": "A", "total_cents": 500}})
    stale = ChangeEvent(seq=3, entity=ENTITY_ORDER, op=OP_UPSERT, entity_id="A", payload={"id": "A", "total_cents": 1})

    snapshot = reduce_events(base, [stale])

    assert snapshot.orders["A"]["total_cents"] == 500
    # Input snapshot is not mutated
    assert reduce_events(base, []) == base


def test_optimistic_view_confirm_and_rollback():
    view = OptimisticView(Snapshot(seq=10))

    kept = view.apply_provisional(ENTITY_ORDER, OP_UPSERT, "A", {"id": "A", "status": "PROCESSING"})
    dropped = view.apply_provisional(ENTITY_ORDER, OP_UPSERT, "B", {"id": "B"})
    assert set(view.current.orders) == {"A", "B"}
    assert view.confirmed.orders == {}
    assert view.pending_count == 2

    view.rollback(dropped)
    server_event = ChangeEvent(
        seq=11, entity=ENTITY_ORDER, op=OP_UPSERT, entity_id="A", payload={"id": "A", "status": "DELIVERED"},
    )
    view.confirm(kept, server_event)

    assert view.pending_count == 0
    assert view.confirmed.seq == 11
    assert view.current.orders == {"A": {"id": "A", "status": "DELIVERED"}}


def test_optimistic_view_sync_applies_feed_events():
    view = OptimisticView()
    view.sync([ChangeEvent(seq=1, entity=ENTITY_CUSTOMER, op=OP_UPSERT, entity_id="7", payload={"id": 7})])
    assert view.confirmed.customers == {"7": {"id": 7}}


def test_confirm_without_server_event_keeps_feed_position():
    view = OptimisticView(Snapshot(seq=5))

    token = view.apply_provisional(ENTITY_ORDER, OP_UPSERT, "PED-1", {"id": "PED-1"})
    view.confirm(token)

    assert view.confirmed.seq == 5
    assert "PED-1" in view.confirmed.orders

    view.sync([ChangeEvent(seq=6, entity=ENTITY_ORDER, op=OP_UPSERT, entity_id="PED-2", payload={"id": "PED-2"})])

    assert view.confirmed.seq == 6
    assert set(view.confirmed.orders) == {"PED-1", "PED-2"}
