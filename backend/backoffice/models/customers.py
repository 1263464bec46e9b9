from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


CONTACT_FIELDS = (
    "name", "phone", "email", "zip", "address", "number",
    "complement", "neighborhood", "city", "state",
)


class Customer(db.Model):
    """
    Customer master data (CustomerInfo).

    cpf is the natural key when present (normalized to 11 digits).
    code is the human-readable sequential code issued by customer_service;
    it is not unique at the DB level so the backfill can repair duplicates.

    Trash: deleted_at set means the customer is in the customer trash.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name_phone", "name", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cpf = db.Column(db.String(11), nullable=True, unique=True)
    code = db.Column(db.String(16), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    zip = db.Column(db.String(16), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    number = db.Column(db.String(32), nullable=True)
    complement = db.Column(db.String(128), nullable=True)
    neighborhood = db.Column(db.String(128), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(64), nullable=True)

    # Seller attribution
    seller_id = db.Column(db.Integer, nullable=True, index=True)
    seller_name = db.Column(db.String(128), nullable=True)

    password_hash = db.Column(db.String(255), nullable=True)

    blocked = db.Column(db.Boolean, nullable=False, default=False)
    blocked_reason = db.Column(db.String(255), nullable=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def snapshot(self) -> dict:
        """Denormalized copy stored on orders."""
        data = {field: getattr(self, field) for field in CONTACT_FIELDS}
        data.update({"id": self.id, "cpf": self.cpf, "code": self.code})
        return data

    def to_dict(self) -> dict:
        data = self.snapshot()
        data.update({
            "seller_id": self.seller_id,
            "seller_name": self.seller_name,
            "blocked": self.blocked,
            "blocked_reason": self.blocked_reason,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        })
        return data
