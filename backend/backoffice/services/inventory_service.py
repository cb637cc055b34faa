# Overview: Service-layer operations for inventory; stock mutation through the inventory ledger.

from __future__ import annotations

from datetime import datetime, timedelta
from math import ceil

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import (
    AuditAction,
    InventoryChangeType,
    InventoryLog,
    Product,
    ProductVariant,
)
from backoffice.time_utils import business_date
from backoffice.validation import BadRequestError, NotFoundError
from .audit_service import record_audit
from .concurrency import begin_immediate, run_with_retry
"""
Inventory ledger invariants (authoritative)

Stock holder:
- A product without variants holds its own quantity_in_stock (NULL = not tracked).
- A product with has_variants=True only holds stock through its variants.

Mutation:
- quantity_in_stock changes ONLY through apply_stock_change, which performs a
  compare-and-swap UPDATE (WHERE quantity_in_stock = previous) and appends an
  InventoryLog row in the same DB transaction.
- A lost compare-and-swap raises StaleDataError; run_with_retry replays the
  whole unit of work from committed state.
- new_quantity may never be negative.

Ledger:
- InventoryLog is append-only; for every holder
  quantity_in_stock == opening + SUM(quantity_change).
"""


class InventoryError(BadRequestError):
    """Raised for inventory operation errors."""
    pass


def _holder_model(variant: ProductVariant | None):
    return ProductVariant if variant is not None else Product


def resolve_stock_holder(
    *,
    product_id: int | None = None,
    variant_id: int | None = None,
    branch_id: int | None = None,
) -> tuple[Product, ProductVariant | None]:
    """
    Load (product, variant) for a holder reference. Variant wins over product.

    Raises NotFoundError when absent; InventoryError when the holder is in
    another branch or a bare product that only stocks through variants.
    """
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None:
            raise NotFoundError("Variant not found")
        product = variant.product
        if branch_id is not None and product.branch_id != branch_id:
            raise InventoryError("Variant does not belong to your branch")
        return product, variant

    if product_id is None:
        raise InventoryError("productId or variantId is required")

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if branch_id is not None and product.branch_id != branch_id:
        raise InventoryError("Product does not belong to your branch")
    if product.has_variants:
        raise InventoryError("Product has variants. Please specify a variantId")
    return product, None


def current_quantity(product: Product, variant: ProductVariant | None = None) -> int | None:
    """Read the holder's quantity straight from the database."""
    model = _holder_model(variant)
    holder_id = variant.id if variant is not None else product.id
    return (
        db.session.query(model.quantity_in_stock)
        .filter(model.id == holder_id)
        .scalar()
    )


def apply_stock_change(
    product: Product,
    variant: ProductVariant | None,
    quantity_change: int,
    change_type: InventoryChangeType,
    *,
    sale_id: int | None = None,
    user_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> InventoryLog:
    """
    Change a holder's stock by quantity_change and append the ledger entry.

    Runs inside the caller's transaction and does not commit.
    """
    previous = current_quantity(product, variant)
    if previous is None:
        raise InventoryError("Product does not track inventory")

    new_quantity = previous + quantity_change
    if new_quantity < 0:
        raise InventoryError(
            f"Insufficient stock. Current stock: {previous}, Attempted change: {quantity_change}",
            details={
                "product_id": product.id,
                "variant_id": variant.id if variant is not None else None,
                "current_stock": previous,
                "attempted_change": quantity_change,
            },
        )

    model = _holder_model(variant)
    holder = variant if variant is not None else product
    stmt = (
        update(model)
        .where(model.id == holder.id, model.quantity_in_stock == previous)
        .values(quantity_in_stock=new_quantity)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise StaleDataError(
            f"{model.__name__} {holder.id} stock changed concurrently (expected {previous})"
        )
    db.session.expire(holder, ["quantity_in_stock"])

    entry = InventoryLog(
        product_id=product.id,
        variant_id=variant.id if variant is not None else None,
        change_type=change_type,
        quantity_change=quantity_change,
        previous_quantity=previous,
        new_quantity=new_quantity,
        sale_id=sale_id,
        user_id=user_id,
        reason=reason,
        notes=notes,
    )
    db.session.add(entry)
    return entry


def adjust_stock(
    *,
    user_id: int,
    branch_id: int,
    quantity_change: int,
    change_type: InventoryChangeType,
    product_id: int | None = None,
    variant_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> InventoryLog:
    """
    Manual stock adjustment (restock, count correction, damage, expiry...).

    Validates and mutates in one unit of work, then emits an audit entry.
    """
    if quantity_change == 0:
        raise InventoryError("quantityChange must not be zero")
    if not isinstance(change_type, InventoryChangeType):
        raise InventoryError("Invalid changeType")

    def _op() -> InventoryLog:
        begin_immediate()
        product, variant = resolve_stock_holder(
            product_id=product_id,
            variant_id=variant_id,
            branch_id=branch_id,
        )
        entry = apply_stock_change(
            product,
            variant,
            quantity_change,
            change_type,
            user_id=user_id,
            reason=reason,
            notes=notes,
        )
        db.session.commit()
        return entry

    entry = run_with_retry(_op)

    label = entry.product.name
    if entry.variant is not None:
        label = f"{label} ({entry.variant.name})"
    sign = "+" if entry.quantity_change > 0 else ""
    current_app.logger.info(
        "Stock adjusted: %s %s%s (%s → %s)",
        label, sign, entry.quantity_change, entry.previous_quantity, entry.new_quantity,
    )

    record_audit(
        user_id,
        AuditAction.UPDATE,
        "Inventory",
        entry.variant_id or entry.product_id,
        new_values={
            "product_id": entry.product_id,
            "variant_id": entry.variant_id,
            "change_type": entry.change_type.value,
            "quantity_change": entry.quantity_change,
            "previous_quantity": entry.previous_quantity,
            "new_quantity": entry.new_quantity,
            "reason": entry.reason,
        },
    )
    return entry


def get_inventory_logs(
    branch_id: int,
    *,
    page: int = 1,
    limit: int | None = None,
    product_id: int | None = None,
    variant_id: int | None = None,
    change_type: InventoryChangeType | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> tuple[list[InventoryLog], dict]:
    """
    Paginated ledger entries for a branch, newest first.

    Returns (rows, meta) with meta = {total, page, last_page}.
    """
    if limit is None:
        limit = current_app.config.get("DEFAULT_PAGE_SIZE", 50)
    limit = max(1, min(int(limit), current_app.config.get("MAX_PAGE_SIZE", 200)))
    page = max(1, int(page))

    query = (
        db.session.query(InventoryLog)
        .join(Product, Product.id == InventoryLog.product_id)
        .filter(Product.branch_id == branch_id)
    )
    if product_id is not None:
        query = query.filter(InventoryLog.product_id == product_id)
    if variant_id is not None:
        query = query.filter(InventoryLog.variant_id == variant_id)
    if change_type is not None:
        query = query.filter(InventoryLog.change_type == change_type)
    if start is not None:
        query = query.filter(InventoryLog.created_at >= start)
    if end is not None:
        query = query.filter(InventoryLog.created_at <= end)

    total = query.count()
    rows = (
        query.order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, {"total": total, "page": page, "last_page": ceil(total / limit)}


def get_low_stock_items(branch_id: int) -> list[dict]:
    """Active holders in the branch whose tracked quantity is at or below threshold."""
    items: list[dict] = []

    products = (
        db.session.query(Product)
        .filter(
            Product.branch_id == branch_id,
            Product.is_active.is_(True),
            Product.has_variants.is_(False),
            Product.quantity_in_stock.isnot(None),
            Product.quantity_in_stock <= Product.low_stock_threshold,
        )
        .order_by(Product.name)
        .all()
    )
    for product in products:
        items.append({
            "product_id": product.id,
            "variant_id": None,
            "name": product.name,
            "sku": product.sku,
            "quantity_in_stock": product.quantity_in_stock,
            "low_stock_threshold": product.low_stock_threshold,
        })

    variants = (
        db.session.query(ProductVariant)
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(
            Product.branch_id == branch_id,
            Product.is_active.is_(True),
            ProductVariant.is_active.is_(True),
            ProductVariant.quantity_in_stock <= ProductVariant.low_stock_threshold,
        )
        .order_by(Product.name, ProductVariant.name)
        .all()
    )
    for variant in variants:
        items.append({
            "product_id": variant.product_id,
            "variant_id": variant.id,
            "name": variant.display_name,
            "sku": variant.sku,
            "quantity_in_stock": variant.quantity_in_stock,
            "low_stock_threshold": variant.low_stock_threshold,
        })
    return items


def get_expiring_items(branch_id: int, days: int = 30) -> list[dict]:
    """Active variants whose expiry date falls within the next `days` business days."""
    today = business_date()
    horizon = today + timedelta(days=days)
    variants = (
        db.session.query(ProductVariant)
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(
            Product.branch_id == branch_id,
            Product.is_active.is_(True),
            ProductVariant.is_active.is_(True),
            ProductVariant.expiry_date.isnot(None),
            ProductVariant.expiry_date >= today,
            ProductVariant.expiry_date <= horizon,
        )
        .order_by(ProductVariant.expiry_date)
        .all()
    )
    return [
        {
            "variant_id": v.id,
            "product_id": v.product_id,
            "name": v.display_name,
            "sku": v.sku,
            "category": v.product.category.name if v.product.category else None,
            "quantity_in_stock": v.quantity_in_stock,
            "expiry_date": v.expiry_date.isoformat(),
            "days_until_expiry": (v.expiry_date - today).days,
        }
        for v in variants
    ]
