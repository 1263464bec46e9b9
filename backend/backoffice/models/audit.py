from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Append-only audit trail of mutating back-office actions.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "audit_log"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(128), nullable=False, index=True)
    details = db.Column(db.Text, nullable=False)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    user_name = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "details": self.details,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "created_at": to_utc_z(self.created_at),
        }
