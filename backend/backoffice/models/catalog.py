from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    Stock is a mutable quantity kept in lockstep with order status by
    stock_service; it may never go negative (CHECK constraint backs the
    service-level validation).

    Products are soft-deleted (deleted_at) and only purged explicitly.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_category", "category", "subcategory"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)

    category = db.Column(db.String(128), nullable=True)
    subcategory = db.Column(db.String(128), nullable=True)

    # fixed: currency per unit; percentage: percent of line total
    commission_type = db.Column(db.String(16), nullable=True)
    commission_value = db.Column(db.Numeric(10, 2), nullable=True)

    max_installments = db.Column(db.Integer, nullable=True)
    is_hidden = db.Column(db.Boolean, nullable=False, default=False)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "stock": self.stock,
            "category": self.category,
            "subcategory": self.subcategory,
            "commission_type": self.commission_type,
            "commission_value": str(self.commission_value) if self.commission_value is not None else None,
            "max_installments": self.max_installments,
            "is_hidden": self.is_hidden,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class Category(db.Model):
    """Product category with an ordered list of subcategory names."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    subcategories = db.Column(db.JSON, nullable=False, default=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "position": self.position,
            "subcategories": list(self.subcategories or []),
        }
