from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, to_iso_date


class Order(db.Model):
    """
    Sales order.

    Money invariants (all cents):
    - total_cents == subtotal_cents - discount_cents
    - subtotal_cents == sum(item.line_total_cents)
    - INSTALLMENT_CREDIT: sum(installment.amount_cents) == total_cents - down_payment_cents

    stock_reserved tracks whether this order currently holds product stock,
    so status transitions never release or reserve twice.

    customer is a JSON snapshot of the customer at order time. It is
    independently mutable (code backfill rewrites it, customer edits don't).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_seller_status", "seller_id", "status"),
    )

    id = db.Column(db.String(32), primary_key=True)  # e.g. "PED-123456"

    # Lifecycle status
    status = db.Column(db.String(16), nullable=False, default="PROCESSING", index=True)  # PROCESSING, DELIVERED, CANCELED, TRASHED
    status_before_trash = db.Column(db.String(16), nullable=True)
    trashed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    stock_reserved = db.Column(db.Boolean, nullable=False, default=False)

    payment_method = db.Column(db.String(24), nullable=False)  # CASH, INSTANT_TRANSFER, INSTALLMENT_CREDIT
    installment_count = db.Column(db.Integer, nullable=False, default=0)
    first_due_date = db.Column(db.Date, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    down_payment_cents = db.Column(db.Integer, nullable=False, default=0)

    # NULL: order predates transfer confirmation tracking (counted as received)
    transfer_confirmed = db.Column(db.Boolean, nullable=True)

    # Seller and commission (commission is derived, cached here)
    seller_id = db.Column(db.Integer, nullable=True, index=True)
    seller_name = db.Column(db.String(128), nullable=True)
    commission_cents = db.Column(db.Integer, nullable=False, default=0)
    commission_manual = db.Column(db.Boolean, nullable=False, default=False)
    commission_paid = db.Column(db.Boolean, nullable=False, default=False)
    commission_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)
    customer = db.Column(db.JSON, nullable=False, default=dict)

    observations = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_id = db.Column(db.Integer, nullable=True)
    created_by_name = db.Column(db.String(128), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy=True,
    )
    installments = db.relationship(
        "Installment",
        backref="order",
        cascade="all, delete-orphan",
        order_by="Installment.installment_number",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "status_before_trash": self.status_before_trash,
            "trashed_at": to_utc_z(self.trashed_at) if self.trashed_at else None,
            "stock_reserved": self.stock_reserved,
            "payment_method": self.payment_method,
            "installment_count": self.installment_count,
            "first_due_date": to_iso_date(self.first_due_date),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "down_payment_cents": self.down_payment_cents,
            "transfer_confirmed": self.transfer_confirmed,
            "seller_id": self.seller_id,
            "seller_name": self.seller_name,
            "commission_cents": self.commission_cents,
            "commission_manual": self.commission_manual,
            "commission_paid": self.commission_paid,
            "commission_paid_at": to_utc_z(self.commission_paid_at) if self.commission_paid_at else None,
            "customer_id": self.customer_id,
            "customer": dict(self.customer or {}),
            "observations": self.observations,
            "source": self.source,
            "created_at": to_utc_z(self.created_at),
            "created_by_id": self.created_by_id,
            "created_by_name": self.created_by_name,
            "version_id": self.version_id,
            "items": [item.to_dict() for item in self.items],
            "installments": [inst.to_dict() for inst in self.installments],
        }


class OrderItem(db.Model):
    """Line item; unit price is frozen at order time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # Plain column: products can be purged while orders keep their history
    product_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Installment(db.Model):
    """
    One scheduled payment of an installment-credit order.

    paid_cents is the running total of payments; it always equals
    sum(payment.amount_cents).
    """
    __tablename__ = "installments"
    __table_args__ = (
        db.UniqueConstraint("order_id", "installment_number", name="uq_installments_order_number"),
    )

    id = db.Column(db.String(64), primary_key=True)  # "inst-<order_id>-<n>"
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)
    installment_number = db.Column(db.Integer, nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, PAID
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payments = db.relationship(
        "InstallmentPayment",
        backref="installment",
        cascade="all, delete-orphan",
        order_by="InstallmentPayment.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "installment_number": self.installment_number,
            "amount_cents": self.amount_cents,
            "due_date": to_iso_date(self.due_date),
            "status": self.status,
            "paid_cents": self.paid_cents,
            "payments": [p.to_dict() for p in self.payments],
            "version_id": self.version_id,
        }


class InstallmentPayment(db.Model):
    """Money received against one installment. Reversal deletes the row."""
    __tablename__ = "installment_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    installment_id = db.Column(db.String(64), db.ForeignKey("installments.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(24), nullable=False)
    received_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "installment_id": self.installment_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "received_by": self.received_by,
            "created_at": to_utc_z(self.created_at),
        }
