from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class CommissionPayment(db.Model):
    """
    Commission payout to a seller covering a set of delivered orders.

    Reversal deletes the row and flips commission_paid back on the orders
    listed in order_ids.
    """
    __tablename__ = "commission_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)
    seller_name = db.Column(db.String(128), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    period = db.Column(db.String(32), nullable=False)
    order_ids = db.Column(db.JSON, nullable=False, default=list)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_by_id = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "seller_name": self.seller_name,
            "amount_cents": self.amount_cents,
            "period": self.period,
            "order_ids": list(self.order_ids or []),
            "payment_date": to_utc_z(self.payment_date),
            "paid_by_id": self.paid_by_id,
        }
