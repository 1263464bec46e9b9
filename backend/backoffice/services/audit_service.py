# Overview: Audit sink; records a human readable trail of every mutating back-office action.

"""
Audit sink.

Every mutating operation reports (action, details, actor) here after its own
commit. Writing the audit row is best effort: a failure is logged and
swallowed so it never fails or rolls back the operation being audited.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import AuditLogEntry
from backoffice.time_utils import utcnow


def log_action(action: str, details: str, actor=None) -> AuditLogEntry | None:
    """
    Append one audit entry.

    actor is a User (or anything with id/name), or None for system actions
    such as CLI maintenance.
    """
    try:
        entry = AuditLogEntry(
            action=action,
            details=details,
            user_id=getattr(actor, "id", None),
            user_name=getattr(actor, "name", None) or "Sistema",
            created_at=utcnow(),
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to write audit entry %r", action)
        return None


def list_entries(*, limit: int = 100, offset: int = 0, action: str | None = None) -> list[AuditLogEntry]:
    query = db.session.query(AuditLogEntry)
    if action:
        query = query.filter(AuditLogEntry.action == action)
    return (
        query.order_by(AuditLogEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
