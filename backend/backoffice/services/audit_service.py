# Overview: Service-layer operations for the audit trail; best-effort, never raises to callers.

from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditAction, AuditLog


def record_audit(
    user_id: int | None,
    action: AuditAction,
    entity: str,
    entity_id: Any = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog | None:
    """
    Append an audit entry in its own commit.

    Call only after the business change has been committed. A failure here
    rolls back the audit write alone, is logged, and returns None; the
    caller's change stays committed.
    """
    if not current_app.config.get("AUDIT_LOG_ENABLED", True):
        return None

    try:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            old_values=old_values,
            new_values=new_values,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except (SQLAlchemyError, TypeError, ValueError):
        db.session.rollback()
        current_app.logger.error(
            "Failed to write audit log (%s %s %s)", action, entity, entity_id, exc_info=True
        )
        return None


def list_audit_logs(
    *,
    entity: str | None = None,
    entity_id: Any = None,
    user_id: int | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    query = db.session.query(AuditLog)
    if entity:
        query = query.filter(AuditLog.entity == entity)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    return query.order_by(AuditLog.id.desc()).limit(limit).all()
