"""
Portfolio Reporting Module

Read-only rollups over the loan and receivable ledgers for dashboards and
period reports: interest collected, outstanding portfolio, delinquency and
pending receivables. Holds no state of its own and exposes no mutations.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from .clock import Clock, SystemClock
from .config import FinancingConfig, get_config
from .currency import Money, money_sum
from .loans import Loan, LoanLedger
from .receivables import Receivable, ReceivableLedger, ReceivableStatus

Moment = Union[date, datetime]


def _as_datetime(moment: Moment) -> datetime:
    """Dates become midnight UTC; naive datetimes are taken as UTC"""
    if isinstance(moment, datetime):
        return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
    return datetime.combine(moment, time.min, tzinfo=timezone.utc)


@dataclass(frozen=True)
class PortfolioSummary:
    """Snapshot of the credit portfolio for a reporting window"""
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    interest_collected: Money
    outstanding_portfolio: Money
    active_loans: int
    delinquent_loans: int
    receivables_pending: Money
    open_receivables: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period_start': self.period_start.isoformat(),
            'period_end': self.period_end.isoformat(),
            'generated_at': self.generated_at.isoformat(),
            'interest_collected': str(self.interest_collected.amount),
            'outstanding_portfolio': str(self.outstanding_portfolio.amount),
            'active_loans': self.active_loans,
            'delinquent_loans': self.delinquent_loans,
            'receivables_pending': str(self.receivables_pending.amount),
            'open_receivables': self.open_receivables,
            'currency': self.interest_collected.currency.code,
        }


class PortfolioReporter:
    """
    Read-only aggregator over both ledgers.

    Every query accepts an explicit collection of loans or receivables; when
    omitted, the current contents of the ledger are read.
    """

    def __init__(
        self,
        loan_ledger: LoanLedger,
        receivable_ledger: ReceivableLedger,
        clock: Optional[Clock] = None,
        config: Optional[FinancingConfig] = None
    ):
        self._loan_ledger = loan_ledger
        self._receivable_ledger = receivable_ledger
        self._clock = clock or SystemClock()
        self._config = config or get_config()

    @property
    def currency(self):
        return self._config.currency_enum

    def interest_collected(self, start: Moment, end: Moment,
                           loans: Optional[Iterable[Loan]] = None) -> Money:
        """
        Interest actually received on installments paid within ``[start, end)``.

        Installments settled by early payoff carry no collected interest, so
        they contribute nothing.
        """
        start, end = _as_datetime(start), _as_datetime(end)
        collected = []
        for loan in self._loans(loans):
            for inst in loan.installments:
                if inst.is_paid and inst.paid_at and start <= inst.paid_at < end:
                    collected.append(inst.interest_paid)
        return money_sum(collected, self.currency)

    def outstanding_portfolio(self, loans: Optional[Iterable[Loan]] = None) -> Money:
        """Outstanding principal across loans that are neither liquidated nor cancelled"""
        return money_sum(
            (loan.compute_outstanding() for loan in self._loans(loans) if not loan.is_terminal),
            self.currency
        )

    def active_loan_count(self, loans: Optional[Iterable[Loan]] = None) -> int:
        return sum(1 for loan in self._loans(loans) if not loan.is_terminal)

    def delinquent_loan_count(self, as_of: Optional[date] = None,
                              grace_period_days: Optional[int] = None,
                              loans: Optional[Iterable[Loan]] = None) -> int:
        as_of = as_of or self._clock.today()
        if grace_period_days is None:
            grace_period_days = self._config.grace_period_days
        return sum(1 for loan in self._loans(loans) if loan.is_delinquent(as_of, grace_period_days))

    def delinquent_loans(self, as_of: Optional[date] = None,
                         grace_period_days: Optional[int] = None,
                         loans: Optional[Iterable[Loan]] = None) -> List[Loan]:
        """Delinquent loans, most overdue first"""
        as_of = as_of or self._clock.today()
        if grace_period_days is None:
            grace_period_days = self._config.grace_period_days
        overdue = [loan for loan in self._loans(loans) if loan.is_delinquent(as_of, grace_period_days)]
        overdue.sort(key=lambda loan: loan.earliest_unpaid.due_date)
        return overdue

    def receivables_pending(self, receivables: Optional[Iterable[Receivable]] = None) -> Money:
        return money_sum(
            (r.balance_due for r in self._receivables(receivables)
             if r.status is not ReceivableStatus.PAID),
            self.currency
        )

    def portfolio_summary(self, start: Moment, end: Moment,
                          as_of: Optional[date] = None) -> PortfolioSummary:
        """All rollups over one consistent read of both ledgers"""
        loans = self._loan_ledger.get_all_loans()
        receivables = self._receivable_ledger.get_all_receivables()

        return PortfolioSummary(
            period_start=_as_datetime(start),
            period_end=_as_datetime(end),
            generated_at=self._clock.now(),
            interest_collected=self.interest_collected(start, end, loans),
            outstanding_portfolio=self.outstanding_portfolio(loans),
            active_loans=self.active_loan_count(loans),
            delinquent_loans=self.delinquent_loan_count(as_of, loans=loans),
            receivables_pending=self.receivables_pending(receivables),
            open_receivables=sum(1 for r in receivables if r.status is not ReceivableStatus.PAID),
        )

    def _loans(self, loans: Optional[Iterable[Loan]]) -> Iterable[Loan]:
        return self._loan_ledger.get_all_loans() if loans is None else loans

    def _receivables(self, receivables: Optional[Iterable[Receivable]]) -> Iterable[Receivable]:
        return self._receivable_ledger.get_all_receivables() if receivables is None else receivables
