from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow


class Expense(db.Model):
    """
    Cash paid out of the branch (supplies, transport, ...).

    Expenses linked to a session are deducted from that session's
    expected drawer cash.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_branch_date", "branch_id", "date"),
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cashier_sessions.id"), nullable=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    session = db.relationship("CashierSession", backref=db.backref("expenses", lazy=True))
    created_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "session_id": self.session_id,
            "title": self.title,
            "category": self.category,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "date": to_utc_z(self.date),
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
