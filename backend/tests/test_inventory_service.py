from datetime import timedelta

import pytest

from backoffice.extensions import db
from backoffice.models import (
    AuditLog,
    InventoryChangeType,
    InventoryLog,
    Product,
    ProductVariant,
)
from backoffice.services import inventory_service
from backoffice.services.inventory_service import InventoryError
from backoffice.time_utils import business_date
from backoffice.validation import NotFoundError


def _adjust(user, branch, change, change_type=InventoryChangeType.ADJUSTMENT, **holder):
    return inventory_service.adjust_stock(
        user_id=user.id,
        branch_id=branch.id,
        quantity_change=change,
        change_type=change_type,
        **holder,
    )


class TestAdjustStock:

    def test_restock_product(self, db_session, branch, admin, product):
        entry = _adjust(admin, branch, 5, InventoryChangeType.RESTOCK, product_id=product.id, reason="Delivery")

        assert entry.previous_quantity == 10
        assert entry.new_quantity == 15
        assert entry.quantity_change == 5
        assert entry.change_type == InventoryChangeType.RESTOCK
        assert entry.reason == "Delivery"
        assert db_session.get(Product, product.id).quantity_in_stock == 15

    def test_adjust_variant(self, db_session, branch, admin, product_with_variants):
        _, cola, _ = product_with_variants
        entry = _adjust(admin, branch, -3, InventoryChangeType.DAMAGE, variant_id=cola.id)

        assert entry.variant_id == cola.id
        assert entry.new_quantity == 17
        assert db_session.get(ProductVariant, cola.id).quantity_in_stock == 17

    def test_negative_result_rejected(self, db_session, branch, admin, product):
        with pytest.raises(InventoryError, match="Insufficient stock. Current stock: 10, Attempted change: -11"):
            _adjust(admin, branch, -11, product_id=product.id)

        assert db_session.get(Product, product.id).quantity_in_stock == 10

    def test_zero_change_rejected(self, db_session, branch, admin, product):
        with pytest.raises(InventoryError, match="quantityChange must not be zero"):
            _adjust(admin, branch, 0, product_id=product.id)

    def test_untracked_product_rejected(self, db_session, branch, admin):
        untracked = Product(branch_id=branch.id, sku="SVC", name="Service", quantity_in_stock=None)
        db_session.add(untracked)
        db_session.commit()

        with pytest.raises(InventoryError, match="Product does not track inventory"):
            _adjust(admin, branch, 1, product_id=untracked.id)

    def test_product_with_variants_needs_variant(self, db_session, branch, admin, product_with_variants):
        soda, _, _ = product_with_variants
        with pytest.raises(InventoryError, match="Please specify a variantId"):
            _adjust(admin, branch, 1, product_id=soda.id)

    def test_other_branch_rejected(self, db_session, branch, other_branch, admin, product):
        with pytest.raises(InventoryError, match="Product does not belong to your branch"):
            _adjust(admin, other_branch, 1, product_id=product.id)

    def test_missing_holder(self, db_session, branch, admin):
        with pytest.raises(NotFoundError, match="Variant not found"):
            _adjust(admin, branch, 1, variant_id=4040)
        with pytest.raises(NotFoundError, match="Product not found"):
            _adjust(admin, branch, 1, product_id=4040)

    def test_adjustment_is_audited(self, db_session, branch, admin, product):
        _adjust(admin, branch, 2, InventoryChangeType.RESTOCK, product_id=product.id)

        entry = db_session.query(AuditLog).filter_by(entity="Inventory").one()
        assert entry.user_id == admin.id
        assert entry.new_values["quantity_change"] == 2
        assert entry.new_values["new_quantity"] == 12


class TestLedgerInvariant:
    """quantity_in_stock always equals the sum of its ledger entries."""

    def test_quantity_replays_from_ledger(self, db_session, branch, admin, product):
        changes = [7, -3, 12, -20, 4]
        for change in changes:
            _adjust(admin, branch, change, product_id=product.id)

        with pytest.raises(InventoryError):
            _adjust(admin, branch, -100, product_id=product.id)

        entries = (
            db_session.query(InventoryLog)
            .filter_by(product_id=product.id, variant_id=None)
            .order_by(InventoryLog.id)
            .all()
        )
        stock = db_session.get(Product, product.id).quantity_in_stock
        assert stock == 10 + sum(changes)
        assert stock == sum(e.quantity_change for e in entries)
        for prev, nxt in zip(entries, entries[1:]):
            assert nxt.previous_quantity == prev.new_quantity
        for entry in entries:
            assert entry.new_quantity == entry.previous_quantity + entry.quantity_change
            assert entry.new_quantity >= 0


class TestInventoryReads:

    def test_logs_paginated_newest_first(self, db_session, branch, admin, product, product_with_variants):
        for _ in range(3):
            _adjust(admin, branch, 1, product_id=product.id)

        rows, meta = inventory_service.get_inventory_logs(branch.id, page=1, limit=2)
        # 1 opening entry for the product, 2 for the variants, 3 adjustments
        assert meta == {"total": 6, "page": 1, "last_page": 3}
        assert len(rows) == 2
        assert rows[0].id > rows[1].id

        rows, meta = inventory_service.get_inventory_logs(branch.id, product_id=product.id)
        assert meta["total"] == 4

        rows, _ = inventory_service.get_inventory_logs(branch.id, change_type=InventoryChangeType.RESTOCK)
        assert len(rows) == 3

    def test_logs_scoped_to_branch(self, db_session, branch, other_branch, product):
        rows, meta = inventory_service.get_inventory_logs(other_branch.id)
        assert rows == []
        assert meta["total"] == 0

    def test_low_stock_items(self, db_session, branch, admin, product, product_with_variants):
        _adjust(admin, branch, -8, product_id=product.id)

        items = inventory_service.get_low_stock_items(branch.id)
        names = {item["name"] for item in items}
        assert names == {"Bottled Water", "Soda - Lemon"}

    def test_expiring_items(self, db_session, branch, product_with_variants):
        _, cola, lemon = product_with_variants
        today = business_date()
        cola.expiry_date = today + timedelta(days=10)
        lemon.expiry_date = today + timedelta(days=90)
        db_session.commit()

        items = inventory_service.get_expiring_items(branch.id, days=30)
        assert [item["variant_id"] for item in items] == [cola.id]
        assert items[0]["days_until_expiry"] == 10
        assert items[0]["category"] == "Drinks"


def test_apply_stock_change_does_not_commit(db_session, branch, product):
    inventory_service.apply_stock_change(product, None, -4, InventoryChangeType.SALE)
    db.session.rollback()

    assert db_session.get(Product, product.id).quantity_in_stock == 10
    assert db_session.query(InventoryLog).filter_by(change_type=InventoryChangeType.SALE).count() == 0
