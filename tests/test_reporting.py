"""
Test suite for portfolio reporting
"""

import pytest
from datetime import date, datetime, timezone

from retail_credit.currency import Money
from retail_credit.loans import LoanLedger
from retail_credit.receivables import ReceivableLedger
from retail_credit.reporting import PortfolioReporter, PortfolioSummary


@pytest.fixture
def reporter(loan_ledger, receivable_ledger, clock, config):
    return PortfolioReporter(loan_ledger, receivable_ledger, clock, config)


@pytest.fixture
def portfolio(loan_ledger, receivable_ledger, clock):
    """
    Two loans and two receivables:

    - loan A: 10,000 over 6 months, installment 1 paid on 2024-02-15
    - loan B: 3,000 over 3 months, liquidated early on 2024-02-20
    - receivable 1: 500, 200 paid
    - receivable 2: 300, fully paid
    """
    loan_a = loan_ledger.create_loan(total_amount="10000", monthly_rate="0.05", term=6,
                                     start_date=date(2024, 1, 15))
    loan_b = loan_ledger.create_loan(total_amount="3000", monthly_rate="0.05", term=3,
                                     start_date=date(2024, 1, 15))

    clock.set(datetime(2024, 2, 15, 10, 0, tzinfo=timezone.utc))
    loan_ledger.apply_payment(loan_a.id, 1, "1970.17")

    clock.set(datetime(2024, 2, 20, 10, 0, tzinfo=timezone.utc))
    loan_ledger.early_payoff(loan_b.id)

    open_tab = receivable_ledger.create_receivable(original_amount="500")
    receivable_ledger.apply_payment(open_tab.id, "200")
    closed_tab = receivable_ledger.create_receivable(original_amount="300")
    receivable_ledger.apply_payment(closed_tab.id, "300")

    return {"loan_a": loan_a, "loan_b": loan_b}


class TestInterestCollected:
    """Test interest collected over a window"""

    def test_counts_paid_installments_in_window(self, reporter, portfolio):
        total = reporter.interest_collected(date(2024, 2, 1), date(2024, 3, 1))
        assert total == Money("500.00")

    def test_window_end_is_exclusive(self, reporter, portfolio):
        assert reporter.interest_collected(date(2024, 2, 1), date(2024, 2, 15)).is_zero()
        assert reporter.interest_collected(
            date(2024, 2, 1), datetime(2024, 2, 15, 10, 0, tzinfo=timezone.utc)
        ).is_zero()

    def test_early_payoff_contributes_nothing(self, reporter, portfolio):
        assert reporter.interest_collected(date(2024, 2, 16), date(2024, 3, 1)).is_zero()

    def test_partial_interest_counts_once_installment_settles(self, reporter, loan_ledger, clock):
        loan = loan_ledger.create_loan(total_amount="10000", monthly_rate="0.05", term=6)
        loan_ledger.apply_payment(loan.id, 1, "300")
        assert reporter.interest_collected(date(2024, 1, 1), date(2024, 12, 31)).is_zero()

        loan_ledger.apply_payment(loan.id, 1, "1670.17")
        assert reporter.interest_collected(date(2024, 1, 1), date(2024, 12, 31)) == Money("500.00")


class TestBalances:
    """Test outstanding and pending rollups"""

    def test_outstanding_portfolio_excludes_terminal_loans(self, reporter, portfolio):
        assert reporter.outstanding_portfolio() == Money("8529.83")

    def test_cancelled_loan_drops_out(self, reporter, portfolio, loan_ledger):
        loan_ledger.cancel(portfolio["loan_a"].id)
        assert reporter.outstanding_portfolio().is_zero()
        assert reporter.active_loan_count() == 0

    def test_active_loan_count(self, reporter, portfolio):
        assert reporter.active_loan_count() == 1

    def test_receivables_pending(self, reporter, portfolio):
        assert reporter.receivables_pending() == Money("300.00")

    def test_empty_ledgers(self, reporter):
        assert reporter.outstanding_portfolio().is_zero()
        assert reporter.receivables_pending().is_zero()
        assert reporter.active_loan_count() == 0
        assert reporter.delinquent_loan_count(date(2030, 1, 1)) == 0


class TestDelinquency:
    """Test delinquent loan counts"""

    def test_no_delinquency_before_due_date(self, reporter, portfolio):
        assert reporter.delinquent_loan_count(date(2024, 3, 15)) == 0

    def test_delinquent_after_due_date(self, reporter, portfolio):
        assert reporter.delinquent_loan_count(date(2024, 3, 16)) == 1
        overdue = reporter.delinquent_loans(date(2024, 3, 16))
        assert [loan.id for loan in overdue] == [portfolio["loan_a"].id]

    def test_grace_period(self, reporter, portfolio):
        assert reporter.delinquent_loan_count(date(2024, 3, 18), grace_period_days=3) == 0

    def test_defaults_to_clock_today(self, reporter, portfolio, clock):
        clock.set(datetime(2024, 4, 1, tzinfo=timezone.utc))
        assert reporter.delinquent_loan_count() == 1

    def test_explicit_loan_set(self, reporter, portfolio, loan_ledger):
        loans = [loan_ledger.get_loan(portfolio["loan_b"].id)]
        assert reporter.delinquent_loan_count(date(2025, 1, 1), loans=loans) == 0


class TestPortfolioSummary:
    """Test the combined summary"""

    def test_summary(self, reporter, portfolio, clock):
        summary = reporter.portfolio_summary(date(2024, 2, 1), date(2024, 3, 1),
                                             as_of=date(2024, 3, 20))

        assert isinstance(summary, PortfolioSummary)
        assert summary.interest_collected == Money("500.00")
        assert summary.outstanding_portfolio == Money("8529.83")
        assert summary.active_loans == 1
        assert summary.delinquent_loans == 1
        assert summary.receivables_pending == Money("300.00")
        assert summary.open_receivables == 1
        assert summary.generated_at == clock.now()

        data = summary.to_dict()
        assert data["interest_collected"] == "500.00"
        assert data["currency"] == "DOP"
        assert data["period_start"] == "2024-02-01T00:00:00+00:00"

    def test_reporter_has_no_mutations(self):
        public = [name for name in dir(PortfolioReporter) if not name.startswith("_")]
        assert not any(name.startswith(("apply", "create", "cancel", "early")) for name in public)

    def test_reads_are_independent_of_ledger_instances(self, storage, clock, config, portfolio):
        """A reporter over fresh ledgers on the same storage sees the same data"""
        reporter = PortfolioReporter(LoanLedger(storage, clock=clock, config=config),
                                     ReceivableLedger(storage, clock=clock, config=config),
                                     clock, config)
        assert reporter.outstanding_portfolio() == Money("8529.83")
