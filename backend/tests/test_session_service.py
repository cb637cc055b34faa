"""
Cashier session lifecycle and cash-drawer reconciliation tests.
"""

from datetime import datetime, timedelta

import pytest

from backoffice.extensions import db
from backoffice.models import AuditLog, CashierSession, PaymentMethod, SessionStatus, User, UserRole
from backoffice.services import expense_service, sales_service, session_service
from backoffice.services.session_service import SessionError
from backoffice.validation import NotFoundError


class TestSessionLifecycle:

    def test_start_session(self, db_session, branch, cashier):
        session = session_service.start_session(branch.id, cashier.id, opening_balance_cents=10_000, name="Shift A")

        assert session.status == SessionStatus.OPEN
        assert session.opening_balance_cents == 10_000
        assert session.closing_balance_cents is None
        assert session.end_time is None
        assert session_service.get_active_session(branch.id, cashier.id).id == session.id

    def test_second_open_session_rejected(self, db_session, branch, cashier, open_session):
        with pytest.raises(SessionError, match="You already have an active session in this branch."):
            session_service.start_session(branch.id, cashier.id)
        assert db_session.query(CashierSession).count() == 1

    def test_concurrent_start_caught_by_unique_index(self, db_session, branch, cashier, open_session, monkeypatch):
        # Simulate a racing start that already passed the active-session check
        monkeypatch.setattr(session_service, "get_active_session", lambda branch_id, user_id: None)

        with pytest.raises(SessionError, match="You already have an active session in this branch."):
            session_service.start_session(branch.id, cashier.id, opening_balance_cents=1_000)

        open_ids = [
            row.id for row in db_session.query(CashierSession.id).filter_by(
                branch_id=branch.id, opened_by_id=cashier.id, status=SessionStatus.OPEN,
            )
        ]
        assert open_ids == [open_session.id]

    def test_unique_index_allows_closed_duplicates(self, db_session, branch, cashier, open_session):
        session_service.end_session(open_session.id, cashier.id, closing_balance_cents=5_000)
        second = session_service.start_session(branch.id, cashier.id)
        session_service.end_session(second.id, cashier.id, closing_balance_cents=0)

        closed = db_session.query(CashierSession).filter_by(status=SessionStatus.CLOSED).count()
        assert closed == 2

    def test_other_user_may_open_in_same_branch(self, db_session, branch, cashier, admin, open_session):
        session = session_service.start_session(branch.id, admin.id)
        assert session.id != open_session.id

    def test_new_session_after_close(self, db_session, branch, cashier, open_session):
        session_service.end_session(open_session.id, cashier.id, 5_000)
        session = session_service.start_session(branch.id, cashier.id)
        assert session.status == SessionStatus.OPEN

    def test_unknown_branch_or_user(self, db_session, branch, cashier):
        with pytest.raises(NotFoundError):
            session_service.start_session(999, cashier.id)
        with pytest.raises(NotFoundError):
            session_service.start_session(branch.id, 999)

    def test_inactive_user_rejected(self, db_session, branch):
        user = User(username="gone", role=UserRole.CASHIER, branch_id=branch.id, is_active=False)
        db_session.add(user)
        db_session.commit()

        with pytest.raises(SessionError):
            session_service.start_session(branch.id, user.id)

    def test_end_session(self, db_session, branch, cashier, admin, open_session):
        session = session_service.end_session(open_session.id, admin.id, 7_500)

        assert session.status == SessionStatus.CLOSED
        assert session.closing_balance_cents == 7_500
        assert session.closed_by_id == admin.id
        assert session.end_time is not None
        assert session_service.get_active_session(branch.id, cashier.id) is None

    def test_end_closed_session_rejected(self, db_session, branch, cashier, open_session):
        session_service.end_session(open_session.id, cashier.id, 5_000)
        with pytest.raises(SessionError, match="Session is already closed"):
            session_service.end_session(open_session.id, cashier.id, 6_000)

        assert db_session.get(CashierSession, open_session.id).closing_balance_cents == 5_000

    def test_end_unknown_session(self, db_session):
        with pytest.raises(NotFoundError):
            session_service.end_session(321, 1, 0)

    def test_lifecycle_is_audited(self, db_session, branch, cashier, open_session):
        session_service.end_session(open_session.id, cashier.id, 5_000)

        actions = [
            e.action.value
            for e in db_session.query(AuditLog).filter_by(entity="Session").order_by(AuditLog.id)
        ]
        assert actions == ["CREATE", "UPDATE"]

    def test_history_newest_first(self, db_session, branch, cashier, open_session):
        session_service.end_session(open_session.id, cashier.id, 5_000)
        latest = session_service.start_session(branch.id, cashier.id)

        history = session_service.get_session_history(branch.id)
        assert [s.id for s in history] == [latest.id, open_session.id]


class TestReconciliation:

    def test_balanced_drawer(self, db_session, branch, cashier, product, purchase_request):
        session = session_service.start_session(branch.id, cashier.id, opening_balance_cents=1_000)
        sales_service.create_sale(
            purchase_request([{"product_id": product.id, "quantity": 1, "unit_price_cents": 300}], 300),
            cashier.id,
            branch.id,
        )
        expense_service.record_expense(
            branch_id=branch.id, user_id=cashier.id, title="Cleaning", amount_cents=50, category="Supplies",
        )
        session_service.end_session(session.id, cashier.id, 1_250)

        summary = session_service.get_session_details(session.id)["summary"]
        cash_flow = summary["cash_flow"]
        assert cash_flow["expected_cash_cents"] == 1_250
        assert cash_flow["actual_cash_cents"] == 1_250
        assert cash_flow["variance_cents"] == 0
        assert cash_flow["is_balanced"] is True

    def test_change_given_reported_next_to_expected_cash(self, db_session, branch, cashier, product, purchase_request):
        session = session_service.start_session(branch.id, cashier.id, opening_balance_cents=1_000)
        sales_service.create_sale(
            purchase_request([{"product_id": product.id, "quantity": 1, "unit_price_cents": 300}], 500),
            cashier.id,
            branch.id,
        )
        session_service.end_session(session.id, cashier.id, 1_300)

        cash_flow = session_service.get_session_details(session.id)["summary"]["cash_flow"]
        assert cash_flow["cash_sales_cents"] == 500
        assert cash_flow["expected_cash_cents"] == 1_500
        assert cash_flow["change_given_cents"] == 200
        assert cash_flow["expected_cash_net_of_change_cents"] == 1_300
        assert cash_flow["variance_cents"] == -200

    def test_full_report(
        self, db_session, branch, cashier, product, product_with_variants, purchase_request, cashback_request
    ):
        _, cola, _ = product_with_variants
        session = session_service.start_session(branch.id, cashier.id, opening_balance_cents=10_000)

        sales_service.create_sale(
            purchase_request([{"product_id": product.id, "quantity": 2, "unit_price_cents": 500}], 1_000),
            cashier.id,
            branch.id,
        )
        sales_service.create_sale(
            purchase_request(
                [{"variant_id": cola.id, "quantity": 4, "unit_price_cents": 250}],
                1_000,
                method=PaymentMethod.CARD,
            ),
            cashier.id,
            branch.id,
        )
        sales_service.create_sale(
            cashback_request(3_000, 3_060, method=PaymentMethod.TRANSFER), cashier.id, branch.id,
        )
        expense_service.record_expense(
            branch_id=branch.id, user_id=cashier.id, title="Fuel", amount_cents=700, category="Transport",
        )
        expense_service.record_expense(
            branch_id=branch.id, user_id=cashier.id, title="Tea", amount_cents=300,
        )
        session_service.end_session(session.id, cashier.id, 5_900)

        details = session_service.get_session_details(session.id)
        summary = details["summary"]

        assert details["status"] == "CLOSED"
        assert summary["total_sales"] == 2
        assert summary["total_revenue_cents"] == 2_000
        assert summary["payments"]["cash"] == {"count": 1, "amount_cents": 1_000}
        assert summary["payments"]["card"] == {"count": 1, "amount_cents": 1_000}
        assert summary["payments"]["transfer"] == {"count": 1, "amount_cents": 3_060}

        assert summary["cashback"] == {
            "count": 1,
            "total_amount_cents": 3_000,
            "total_service_charge_cents": 60,
            "total_received_cents": 3_060,
        }
        assert summary["expenses"]["total_amount_cents"] == 1_000
        assert {e["category"] for e in summary["expenses"]["by_category"]} == {"Transport", "Uncategorized"}

        # 10,000 opening + 1,000 cash - 3,000 cashback - 1,000 expenses
        cash_flow = summary["cash_flow"]
        assert cash_flow["expected_cash_cents"] == 7_000
        assert cash_flow["variance_cents"] == -1_100
        assert cash_flow["variance_percentage"] == round(-1_100 / 7_000 * 100, 2)
        assert cash_flow["is_balanced"] is False

        assert [p["name"] for p in summary["top_products"]] == ["Bottled Water", "Soda - Cola"]
        assert summary["category_breakdown"] == [
            {"category_name": "Drinks", "items_sold": 6, "revenue_cents": 2_000},
        ]
        assert sum(h["sales_count"] for h in summary["hourly_breakdown"]) == 2
        assert summary["duration_minutes"] is not None

    def test_open_session_has_no_variance(self, db_session, branch, cashier, open_session):
        summary = session_service.reconcile(open_session)

        assert summary["cash_flow"]["expected_cash_cents"] == 5_000
        assert summary["cash_flow"]["actual_cash_cents"] is None
        assert summary["cash_flow"]["variance_cents"] == 0
        assert summary["cash_flow"]["is_balanced"] is True
        assert summary["duration_minutes"] is None

    def test_empty_session_report(self, db_session, branch, cashier, open_session):
        summary = session_service.reconcile(open_session)

        assert summary["total_sales"] == 0
        assert summary["top_products"] == []
        assert summary["hourly_breakdown"] == []
        assert summary["payments"]["cash"] == {"count": 0, "amount_cents": 0}

    def test_hourly_bucket_label(self, db_session, branch, cashier, product, open_session, purchase_request):
        sale = sales_service.create_sale(
            purchase_request([{"product_id": product.id, "quantity": 1, "unit_price_cents": 500}], 500),
            cashier.id,
            branch.id,
        )
        sale.created_at = datetime(2026, 3, 1, 14, 37)
        db.session.commit()

        summary = session_service.reconcile(db_session.get(CashierSession, open_session.id))
        assert summary["hourly_breakdown"] == [{"hour": "14:00", "sales_count": 1, "revenue_cents": 500}]

    def test_duration_minutes(self, db_session, branch, cashier, open_session):
        session = db_session.get(CashierSession, open_session.id)
        session.status = SessionStatus.CLOSED
        session.end_time = session.start_time + timedelta(minutes=95)
        session.closing_balance_cents = 5_000
        db.session.commit()

        assert session_service.reconcile(session)["duration_minutes"] == 95

    def test_unknown_session(self, db_session):
        with pytest.raises(NotFoundError):
            session_service.get_session_details(999)
