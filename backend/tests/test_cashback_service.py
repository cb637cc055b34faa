import pytest

from backoffice.models import AuditLog, Branch, CapitalChangeType, CashbackCapitalLog
from backoffice.services import cashback_service
from backoffice.services.cashback_service import CashbackError
from backoffice.validation import NotFoundError


class TestServiceCharge:

    @pytest.mark.parametrize(
        "amount, rate_bps, expected",
        [
            (10_000, 200, 200),
            (12_345, 150, 185),   # 185.175 rounds down
            (10_050, 150, 151),   # 150.75 rounds up
            (5_000, 0, 0),
        ],
    )
    def test_rounds_half_up_to_the_cent(self, amount, rate_bps, expected):
        branch = Branch(name="x", cashback_service_charge_rate_bps=rate_bps)
        assert cashback_service.service_charge_for(branch, amount) == expected


class TestAdjustCapital:

    def test_top_up(self, db_session, branch, admin):
        result = cashback_service.adjust_capital(branch.id, 25_000, user_id=admin.id, notes="Float top-up")

        assert result == {
            "previous_capital_cents": 100_000,
            "adjustment_cents": 25_000,
            "new_capital_cents": 125_000,
            "notes": "Float top-up",
        }
        assert cashback_service.current_capital(branch.id) == 125_000

        entry = db_session.query(CashbackCapitalLog).one()
        assert entry.change_type == CapitalChangeType.ADJUSTMENT
        assert entry.user_id == admin.id

    def test_drawdown(self, db_session, branch, admin):
        result = cashback_service.adjust_capital(branch.id, -40_000, user_id=admin.id)
        assert result["new_capital_cents"] == 60_000

    def test_drawdown_below_zero_rejected(self, db_session, branch, admin):
        with pytest.raises(CashbackError, match="Insufficient capital. Current: 1000.00, Adjustment: -1000.01"):
            cashback_service.adjust_capital(branch.id, -100_001, user_id=admin.id)

        assert cashback_service.current_capital(branch.id) == 100_000
        assert db_session.query(CashbackCapitalLog).count() == 0

    def test_zero_rejected(self, db_session, branch, admin):
        with pytest.raises(CashbackError):
            cashback_service.adjust_capital(branch.id, 0, user_id=admin.id)

    def test_unknown_branch(self, db_session, admin):
        with pytest.raises(NotFoundError):
            cashback_service.adjust_capital(777, 100, user_id=admin.id)

    def test_adjustment_is_audited(self, db_session, branch, admin):
        cashback_service.adjust_capital(branch.id, 500, user_id=admin.id, notes="Till float")

        entry = db_session.query(AuditLog).filter_by(entity="Branch", entity_id=str(branch.id)).one()
        assert entry.old_values == {"cashback_capital_cents": 100_000}
        assert entry.new_values == {"cashback_capital_cents": 100_500, "notes": "Till float"}


class TestCapitalReads:

    def test_get_capital(self, db_session, branch):
        assert cashback_service.get_capital(branch.id) == {
            "branch_id": branch.id,
            "cashback_capital_cents": 100_000,
            "cashback_service_charge_rate_bps": 200,
        }

    def test_logs_newest_first(self, db_session, branch, admin):
        cashback_service.adjust_capital(branch.id, 100, user_id=admin.id)
        cashback_service.adjust_capital(branch.id, -50, user_id=admin.id)

        logs = cashback_service.get_capital_logs(branch.id)
        assert [entry.change_cents for entry in logs] == [-50, 100]
        assert logs[0].previous_capital_cents == logs[1].new_capital_cents


def test_decrement_requires_positive_amount(db_session, branch):
    with pytest.raises(CashbackError):
        cashback_service.decrement_capital(branch.id, 0)
