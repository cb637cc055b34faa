from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import utcnow


class ReceiptSequence(db.Model):
    """
    Atomic per-day receipt sequence.

    One row per business date; next_number is bumped with a single
    UPDATE ... SET next_number = next_number + 1 inside the sale's
    transaction, so concurrent sales never share a number and a rolled
    back sale gives its number back.
    """
    __tablename__ = "receipt_sequences"
    __table_args__ = (
        db.UniqueConstraint("business_date", name="uq_receipt_sequences_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_date": self.business_date.isoformat(),
            "next_number": self.next_number,
        }
