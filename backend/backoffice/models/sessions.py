from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow
from .enums import SessionStatus


class CashierSession(db.Model):
    """
    A cashier's working shift in a branch, used for cash-drawer reconciliation.

    LIFECYCLE:
    - OPEN: Shift is active; sales rung up by the opener are linked to it
    - CLOSED: Shift ended, closing cash counted

    At most one OPEN session per (branch, opener). Enforced by the partial
    unique index below as well as the service pre-check.

    IMMUTABLE: Once closed, session cannot be reopened or modified.
    """
    __tablename__ = "cashier_sessions"
    __table_args__ = (
        db.Index(
            "uq_cashier_sessions_one_open",
            "branch_id",
            "opened_by_id",
            unique=True,
            sqlite_where=text("status = 'OPEN'"),
            postgresql_where=text("status = 'OPEN'"),
        ),
        db.Index("ix_cashier_sessions_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    opened_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    closed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    name = db.Column(db.String(120), nullable=True)

    status = db.Column(
        db.Enum(SessionStatus, native_enum=False, length=16),
        nullable=False,
        default=SessionStatus.OPEN,
        index=True,
    )

    # Cash tracking (all amounts in cents)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_balance_cents = db.Column(db.Integer, nullable=True)  # Set when closing

    start_time = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("sessions", lazy=True))
    opened_by = db.relationship("User", foreign_keys=[opened_by_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def duration_minutes(self) -> int | None:
        if not self.end_time:
            return None
        return round((self.end_time - self.start_time).total_seconds() / 60)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "opened_by_id": self.opened_by_id,
            "closed_by_id": self.closed_by_id,
            "name": self.name,
            "status": self.status.value,
            "opening_balance_cents": self.opening_balance_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time) if self.end_time else None,
            "opened_by": self.opened_by.display_name if self.opened_by else None,
            "closed_by": self.closed_by.display_name if self.closed_by else None,
            "version_id": self.version_id,
        }
