from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow
from .enums import InventoryChangeType


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "name", name="uq_categories_branch_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCK HOLDER: a product without variants carries its own
    quantity_in_stock. NULL means "not tracked". A product with
    has_variants=True only sells through its ProductVariant rows.

    quantity_in_stock is mutated only by inventory_service.apply_stock_change
    (compare-and-swap UPDATE + InventoryLog row), never by attribute assignment.
    """
    __tablename__ = "products"
    __table_args__ = (
        # SKUs are unique within a branch
        db.UniqueConstraint("branch_id", "sku", name="uq_products_branch_sku"),
        db.Index("ix_products_branch_name", "branch_id", "name"),
        db.Index("ix_products_branch_active", "branch_id", "is_active"),
        db.CheckConstraint(
            "quantity_in_stock IS NULL OR quantity_in_stock >= 0",
            name="ck_products_stock_non_negative",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    subdivision_id = db.Column(db.Integer, db.ForeignKey("subdivisions.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    selling_price_cents = db.Column(db.Integer, nullable=True)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    has_variants = db.Column(db.Boolean, nullable=False, default=False)
    quantity_in_stock = db.Column(db.Integer, nullable=True)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))
    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    subdivision = db.relationship("Subdivision")

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "category_id": self.category_id,
            "subdivision_id": self.subdivision_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "selling_price_cents": self.selling_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "has_variants": self.has_variants,
            "quantity_in_stock": self.quantity_in_stock,
            "low_stock_threshold": self.low_stock_threshold,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """Sellable variant (size, pack, flavour). Always tracks stock."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "sku", name="uq_variants_product_sku"),
        db.CheckConstraint("quantity_in_stock >= 0", name="ck_variants_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)

    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity_in_stock = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)
    expiry_date = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    @property
    def display_name(self) -> str:
        return f"{self.product.name} - {self.name}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "selling_price_cents": self.selling_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "quantity_in_stock": self.quantity_in_stock,
            "low_stock_threshold": self.low_stock_threshold,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLog(db.Model):
    """
    Append-only record of one stock quantity change.

    Invariants:
    - new_quantity = previous_quantity + quantity_change
    - For a holder, rows ordered by id replay its quantity exactly.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.Index("ix_invlog_product_created", "product_id", "created_at"),
        db.Index("ix_invlog_variant_created", "variant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)

    change_type = db.Column(db.Enum(InventoryChangeType, native_enum=False, length=32), nullable=False, index=True)

    quantity_change = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "change_type": self.change_type.value,
            "quantity_change": self.quantity_change,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "product": {"id": self.product.id, "name": self.product.name, "sku": self.product.sku} if self.product else None,
            "variant": {"id": self.variant.id, "name": self.variant.name, "sku": self.variant.sku} if self.variant else None,
        }
