from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow
from .enums import AuditAction


class AuditLog(db.Model):
    """
    Who changed what.

    Written by audit_service.record_audit after the business commit, in its
    own transaction; a failed write never affects the change it describes.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    action = db.Column(db.Enum(AuditAction, native_enum=False, length=16), nullable=False, index=True)
    entity = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action.value,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "created_at": to_utc_z(self.created_at),
        }
