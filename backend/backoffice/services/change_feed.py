# Overview: In-process change feed and the single reducer that folds change events into read snapshots.

"""
Change feed

Services publish a typed ChangeEvent after every successful commit. Readers
poll GET /api/changes?since=<seq> (or call events_since directly) and fold
the events into a Snapshot with reduce_events, the only function allowed to
mutate a view of orders/customers/products.

OptimisticView layers provisional (not yet confirmed) events over a
confirmed snapshot. A provisional event is either confirmed (optionally
replaced by the authoritative server event) or rolled back.

This module must not import models or extensions at import time:
extensions.py instantiates the process-wide ChangeFeed from here.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from backoffice.time_utils import utcnow, to_utc_z


OP_UPSERT = "upsert"
OP_DELETE = "delete"

ENTITY_ORDER = "order"
ENTITY_CUSTOMER = "customer"
ENTITY_PRODUCT = "product"
ENTITY_CATEGORY = "category"
ENTITY_COMMISSION_PAYMENT = "commission_payment"

# Entity -> Snapshot attribute
_COLLECTIONS = {
    ENTITY_ORDER: "orders",
    ENTITY_CUSTOMER: "customers",
    ENTITY_PRODUCT: "products",
    ENTITY_CATEGORY: "categories",
    ENTITY_COMMISSION_PAYMENT: "commission_payments",
}


@dataclass(frozen=True)
class ChangeEvent:
    seq: int
    entity: str
    op: str
    entity_id: str
    payload: dict | None = None
    occurred_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "entity": self.entity,
            "op": self.op,
            "entity_id": self.entity_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at,
        }


class ChangeFeed:
    """
    Bounded, sequence-numbered history of change events.

    Sequence numbers are strictly increasing for the lifetime of the
    process. When a reader's cursor falls behind the retained history,
    events_since reports it so the reader can reload a full snapshot.
    """

    def __init__(self, history: int = 1000):
        self._lock = threading.Lock()
        self._events: deque[ChangeEvent] = deque(maxlen=history)
        self._seq = itertools.count(1)
        self._latest = 0

    def init_app(self, app) -> None:
        history = int(app.config.get("CHANGE_FEED_HISTORY", 1000))
        with self._lock:
            self._events = deque(self._events, maxlen=history)
        app.extensions["change_feed"] = self

    @property
    def latest_seq(self) -> int:
        return self._latest

    def publish(self, entity: str, op: str, entity_id, payload: dict | None = None) -> ChangeEvent:
        if entity not in _COLLECTIONS:
            raise ValueError(f"Unknown entity for change feed: {entity}")
        if op not in (OP_UPSERT, OP_DELETE):
            raise ValueError(f"Unknown change op: {op}")
        with self._lock:
            event = ChangeEvent(
                seq=next(self._seq),
                entity=entity,
                op=op,
                entity_id=str(entity_id),
                payload=payload,
                occurred_at=to_utc_z(utcnow()),
            )
            self._events.append(event)
            self._latest = event.seq
        return event

    def events_since(self, seq: int = 0) -> tuple[list[ChangeEvent], bool]:
        """
        Events with seq > given seq, oldest first.

        Returns (events, complete). complete is False when older events the
        caller has not seen were already evicted from the history.
        """
        with self._lock:
            events = [e for e in self._events if e.seq > seq]
            oldest = self._events[0].seq if self._events else self._latest + 1
            complete = seq >= oldest - 1
        return events, complete

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of the record store at a change-feed sequence number."""
    seq: int = 0
    orders: dict = field(default_factory=dict)
    customers: dict = field(default_factory=dict)
    products: dict = field(default_factory=dict)
    categories: dict = field(default_factory=dict)
    commission_payments: dict = field(default_factory=dict)

    def order_list(self) -> list[dict]:
        return list(self.orders.values())

    def product_list(self) -> list[dict]:
        return list(self.products.values())

    def customer_list(self) -> list[dict]:
        return list(self.customers.values())


def reduce_events(snapshot: Snapshot, events: Iterable[ChangeEvent]) -> Snapshot:
    """
    Fold events into a new Snapshot. The input snapshot is left untouched.

    Events at or below snapshot.seq are skipped, so replaying an overlapping
    batch is harmless. Events with seq 0 (provisional) are always applied.
    """
    collections = {name: dict(getattr(snapshot, name)) for name in _COLLECTIONS.values()}
    seq = snapshot.seq

    for event in events:
        if event.seq and event.seq <= snapshot.seq:
            continue
        target = collections[_COLLECTIONS[event.entity]]
        if event.op == OP_DELETE:
            target.pop(event.entity_id, None)
        else:
            target[event.entity_id] = dict(event.payload or {})
        seq = max(seq, event.seq)

    return Snapshot(seq=seq, **collections)


class OptimisticView:
    """
    Two-phase local state: confirmed snapshot plus pending provisional events.

    apply_provisional() makes a change visible immediately and returns a
    token. confirm(token) promotes it into the confirmed snapshot (using the
    authoritative server event when given); rollback(token) discards it.
    """

    def __init__(self, snapshot: Snapshot | None = None):
        self._confirmed = snapshot or Snapshot()
        self._pending: dict[int, ChangeEvent] = {}
        self._tokens = itertools.count(1)

    @property
    def confirmed(self) -> Snapshot:
        return self._confirmed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def current(self) -> Snapshot:
        return reduce_events(self._confirmed, self._pending.values())

    def apply_provisional(self, entity: str, op: str, entity_id, payload: dict | None = None) -> int:
        token = next(self._tokens)
        self._pending[token] = ChangeEvent(
            seq=0, entity=entity, op=op, entity_id=str(entity_id), payload=payload,
        )
        return token

    def confirm(self, token: int, server_event: ChangeEvent | None = None) -> None:
        event = self._pending.pop(token, None)
        if event is None:
            return
        # Without a server event the change stays at seq 0; the feed event that
        # carries it arrives through sync()
        if server_event is not None:
            event = server_event
        self._confirmed = reduce_events(self._confirmed, [event])

    def rollback(self, token: int) -> None:
        self._pending.pop(token, None)

    def sync(self, events: Iterable[ChangeEvent]) -> None:
        """Apply events received from the feed to the confirmed snapshot."""
        self._confirmed = reduce_events(self._confirmed, events)


def load_snapshot() -> Snapshot:
    """Build a Snapshot from the database at the feed's current sequence."""
    from ..extensions import db, change_feed
    from ..models import Order, Customer, Product, Category, CommissionPayment

    seq = change_feed.latest_seq
    return Snapshot(
        seq=seq,
        orders={o.id: o.to_dict() for o in db.session.query(Order).all()},
        customers={str(c.id): c.to_dict() for c in db.session.query(Customer).all()},
        products={str(p.id): p.to_dict() for p in db.session.query(Product).all()},
        categories={str(c.id): c.to_dict() for c in db.session.query(Category).all()},
        commission_payments={str(p.id): p.to_dict() for p in db.session.query(CommissionPayment).all()},
    )


def publish_upsert(entity: str, record) -> ChangeEvent:
    from ..extensions import change_feed
    return change_feed.publish(entity, OP_UPSERT, record.id, record.to_dict())


def publish_delete(entity: str, entity_id) -> ChangeEvent:
    from ..extensions import change_feed
    return change_feed.publish(entity, OP_DELETE, entity_id)
