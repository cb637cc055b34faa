from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow
from .enums import CreditStatus, PaymentMethod, PaymentStatus, TransactionType


class Sale(db.Model):
    """
    One committed transaction (PURCHASE or CASHBACK).

    The aggregate (Sale + SaleItems + Payments) is written once, in one DB
    transaction. Afterwards only credit-sale payment appends touch it, and
    those only change amount_paid/amount_due/payment_status/credit_status
    (plus change_given), never items or totals.

    Invariants (all amounts in cents):
    - total_amount = subtotal + tax_amount - discount_amount   (PURCHASE)
    - amount_due = total_amount - amount_paid
    - amount_paid = sum(payments.amount_cents)

    CASHBACK: subtotal is what the customer handed over (payout + service
    charge), total_amount is the payout.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        db.Index("ix_sales_branch_created", "branch_id", "created_at"),
        db.Index("ix_sales_branch_status_created", "branch_id", "payment_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable receipt number (e.g., "RCP-20260114-0001")
    receipt_number = db.Column(db.String(64), nullable=False)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cashier_sessions.id"), nullable=True, index=True)
    subdivision_id = db.Column(db.Integer, db.ForeignKey("subdivisions.id"), nullable=True, index=True)

    transaction_type = db.Column(
        db.Enum(TransactionType, native_enum=False, length=16),
        nullable=False,
        default=TransactionType.PURCHASE,
        index=True,
    )

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(
        db.Enum(PaymentStatus, native_enum=False, length=16),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )

    # Credit sales
    is_credit_sale = db.Column(db.Boolean, nullable=False, default=False)
    credit_status = db.Column(db.Enum(CreditStatus, native_enum=False, length=16), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("sales", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_id])
    session = db.relationship("CashierSession", backref=db.backref("sales", lazy=True))
    items = db.relationship("SaleItem", back_populates="sale", lazy=True, order_by="SaleItem.id")
    payments = db.relationship("Payment", back_populates="sale", lazy=True, order_by="Payment.id")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def service_charge_cents(self) -> int:
        if self.transaction_type != TransactionType.CASHBACK:
            return 0
        return self.subtotal_cents - self.total_amount_cents

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "branch_id": self.branch_id,
            "cashier_id": self.cashier_id,
            "session_id": self.session_id,
            "subdivision_id": self.subdivision_id,
            "transaction_type": self.transaction_type.value,
            "subtotal_cents": self.subtotal_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "change_given_cents": self.change_given_cents,
            "payment_status": self.payment_status.value,
            "is_credit_sale": self.is_credit_sale,
            "credit_status": self.credit_status.value if self.credit_status else None,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleItem(db.Model):
    """
    Line item snapshot.

    name/sku/prices are copied at sale time so later catalog edits never
    alter historical totals. total = quantity * unit_price (tax is zero).
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)

    item_name = db.Column(db.String(255), nullable=False)
    item_sku = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "item_name": self.item_name,
            "item_sku": self.item_sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_amount_cents": self.tax_amount_cents,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Tender applied to a sale.

    Split payments: one sale can have many rows. Credit sales gain rows
    later through sales_service.add_payment. Rows are never edited.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.Enum(PaymentMethod, native_enum=False, length=16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    # Card auth code, transfer reference, etc.
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    sale = db.relationship("Sale", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method.value,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
