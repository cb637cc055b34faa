from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow
from .enums import CapitalChangeType


class Branch(db.Model):
    """
    A physical shop location.

    Owns the cashback float (cashback_capital_cents). That balance is only
    ever changed through cashback_service (conditional UPDATE), never by
    assigning the attribute.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.CheckConstraint("cashback_capital_cents >= 0", name="ck_branches_capital_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    # Receipt header
    business_name = db.Column(db.String(255), nullable=True)
    business_address = db.Column(db.String(255), nullable=True)
    business_phone = db.Column(db.String(32), nullable=True)
    receipt_footer = db.Column(db.String(255), nullable=True)
    currency = db.Column(db.String(8), nullable=True)

    # Cashback float
    cashback_capital_cents = db.Column(db.Integer, nullable=False, default=0)
    cashback_service_charge_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # 150 = 1.5%

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "business_name": self.business_name,
            "business_address": self.business_address,
            "business_phone": self.business_phone,
            "receipt_footer": self.receipt_footer,
            "currency": self.currency,
            "cashback_capital_cents": self.cashback_capital_cents,
            "cashback_service_charge_rate_bps": self.cashback_service_charge_rate_bps,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Subdivision(db.Model):
    """Section of a branch (e.g. pharmacy counter) a cashier can be assigned to."""
    __tablename__ = "subdivisions"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "name", name="uq_subdivisions_branch_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("subdivisions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CashbackCapitalLog(db.Model):
    """
    Append-only history of cashback float changes.

    Every change (cashback sale payout or administrative top-up/drawdown)
    writes one row in the same DB transaction as the balance update.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "cashback_capital_logs"
    __table_args__ = (
        db.Index("ix_capital_logs_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    change_type = db.Column(db.Enum(CapitalChangeType, native_enum=False, length=32), nullable=False)

    # Signed: negative for payouts/drawdowns
    change_cents = db.Column(db.Integer, nullable=False)
    previous_capital_cents = db.Column(db.Integer, nullable=False)
    new_capital_cents = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    branch = db.relationship("Branch", backref=db.backref("capital_logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "change_type": self.change_type.value,
            "change_cents": self.change_cents,
            "previous_capital_cents": self.previous_capital_cents,
            "new_capital_cents": self.new_capital_cents,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
