"""
Amortization Schedule Module

French-method (level payment) schedule generation for installment sales.

Per-period rates are derived from the nominal monthly rate by plain division
(biweekly = m/2, weekly = m/4), not by compounding conversion. This is the
store's established pricing and is kept as-is so schedules match the ones
already issued to customers.

Rows are chained on cent-rounded balances, so every row satisfies
``opening - principal == closing`` exactly and the final row absorbs the
accumulated rounding residue.
"""

from decimal import Decimal
from datetime import date, datetime, timedelta
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import calendar

from .currency import Currency, Money, money_sum, to_decimal
from .errors import InvalidAmount, InvalidTerms, ReconciliationFailure


class Cadence(Enum):
    """Payment frequency"""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    @property
    def periods_per_month(self) -> int:
        return _PERIODS_PER_MONTH[self]

    def due_date(self, start_date: date, period: int) -> date:
        """Due date of the given 1-based period counted from ``start_date``"""
        if self is Cadence.MONTHLY:
            return add_months(start_date, period)
        return start_date + timedelta(days=_DAYS_PER_PERIOD[self] * period)


_PERIODS_PER_MONTH = {
    Cadence.WEEKLY: 4,
    Cadence.BIWEEKLY: 2,
    Cadence.MONTHLY: 1,
}

# Biweekly is a quincena (15 days), not 14
_DAYS_PER_PERIOD = {
    Cadence.WEEKLY: 7,
    Cadence.BIWEEKLY: 15,
}


def add_months(start_date: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's last day"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_rate(monthly_rate: Decimal, cadence: Cadence) -> Decimal:
    """Per-period rate: m, m/2 or m/4"""
    return to_decimal(monthly_rate) / Decimal(cadence.periods_per_month)


def level_payment(principal: Decimal, rate: Decimal, term: int) -> Decimal:
    """
    Unrounded level payment ``P * r / (1 - (1 + r)^-n)``.

    Degrades to ``P / n`` for a zero rate.
    """
    if rate == 0:
        return principal / Decimal(term)
    return principal * rate / (Decimal(1) - (Decimal(1) + rate) ** -term)


@dataclass
class Installment:
    """One row of a loan's amortization schedule"""
    sequence: int
    due_date: date
    opening_balance: Money
    interest_amount: Money
    principal_amount: Money
    closing_balance: Money
    scheduled_payment: Money
    paid_amount: Money = None
    interest_paid: Money = None
    principal_paid: Money = None
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_early_payment: bool = False
    loan_id: Optional[str] = None

    def __post_init__(self):
        zero = Money.zero(self.scheduled_payment.currency)
        if self.paid_amount is None:
            self.paid_amount = zero
        if self.interest_paid is None:
            self.interest_paid = zero
        if self.principal_paid is None:
            self.principal_paid = zero

    @property
    def amount_due(self) -> Money:
        """Unpaid remainder of the scheduled payment"""
        if self.is_paid:
            return Money.zero(self.scheduled_payment.currency)
        return self.scheduled_payment - self.paid_amount

    @property
    def interest_due(self) -> Money:
        remaining = self.interest_amount - self.interest_paid
        return remaining if remaining.is_positive() else Money.zero(remaining.currency)

    @property
    def principal_due(self) -> Money:
        remaining = self.principal_amount - self.principal_paid
        return remaining if remaining.is_positive() else Money.zero(remaining.currency)

    def is_overdue(self, as_of: date, grace_period_days: int = 0) -> bool:
        return not self.is_paid and (as_of - self.due_date).days > grace_period_days

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'sequence': self.sequence,
            'due_date': self.due_date.isoformat(),
            'opening_balance': str(self.opening_balance.amount),
            'interest_amount': str(self.interest_amount.amount),
            'principal_amount': str(self.principal_amount.amount),
            'closing_balance': str(self.closing_balance.amount),
            'scheduled_payment': str(self.scheduled_payment.amount),
            'paid_amount': str(self.paid_amount.amount),
            'interest_paid': str(self.interest_paid.amount),
            'principal_paid': str(self.principal_paid.amount),
            'is_paid': self.is_paid,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'is_early_payment': self.is_early_payment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'Installment':
        def money(key: str) -> Money:
            return Money(Decimal(data[key]), currency)

        return cls(
            loan_id=data.get('loan_id'),
            sequence=data['sequence'],
            due_date=date.fromisoformat(data['due_date']),
            opening_balance=money('opening_balance'),
            interest_amount=money('interest_amount'),
            principal_amount=money('principal_amount'),
            closing_balance=money('closing_balance'),
            scheduled_payment=money('scheduled_payment'),
            paid_amount=money('paid_amount'),
            interest_paid=money('interest_paid'),
            principal_paid=money('principal_paid'),
            is_paid=data['is_paid'],
            paid_at=datetime.fromisoformat(data['paid_at']) if data.get('paid_at') else None,
            is_early_payment=data.get('is_early_payment', False),
        )


def generate_schedule(
    principal: Money,
    monthly_rate: Decimal,
    cadence: Cadence,
    term: int,
    start_date: date
) -> List[Installment]:
    """
    Generate a level-payment amortization schedule.

    Args:
        principal: Financed amount, must be positive
        monthly_rate: Nominal monthly rate as a fraction (0.05 for 5%)
        cadence: Payment frequency
        term: Number of installments
        start_date: Date the financing starts; installment i is due i periods later

    Returns:
        Installments ordered by sequence, with ``loan_id`` unset

    Raises:
        InvalidAmount: principal is not positive
        InvalidTerms: bad term or rate, or a level payment that rounds to zero
        ReconciliationFailure: the generated rows do not reconcile (a defect)
    """
    principal = principal.round()
    if not principal.is_positive():
        raise InvalidAmount(f"Principal must be positive, got {principal.amount}")
    if not isinstance(term, int) or isinstance(term, bool) or term < 1:
        raise InvalidTerms(f"Term must be a positive integer, got {term!r}")
    monthly_rate = to_decimal(monthly_rate)
    if monthly_rate < 0:
        raise InvalidTerms(f"Rate cannot be negative, got {monthly_rate}")

    currency = principal.currency
    zero = Money.zero(currency)
    rate = period_rate(monthly_rate, cadence)
    payment = Money(level_payment(principal.amount, rate, term), currency).round()
    if not payment.is_positive():
        raise InvalidTerms(
            f"Level payment rounds to zero for {principal.amount} over {term} installments"
        )

    rows: List[Installment] = []
    balance = principal
    for sequence in range(1, term + 1):
        opening = balance
        interest = (opening * rate).round()

        if sequence == term:
            principal_part = principal - money_sum((r.principal_amount for r in rows), currency)
        else:
            principal_part = payment - interest
            if principal_part > opening:
                principal_part = opening
            elif principal_part.is_negative():
                principal_part = zero

        closing = opening - principal_part
        if sequence == term:
            closing = max(closing, zero)

        rows.append(Installment(
            sequence=sequence,
            due_date=cadence.due_date(start_date, sequence),
            opening_balance=opening,
            interest_amount=interest,
            principal_amount=principal_part,
            closing_balance=closing,
            scheduled_payment=principal_part + interest,
        ))
        balance = closing

    verify_schedule(rows, principal)
    return rows


def verify_schedule(rows: List[Installment], principal: Money) -> None:
    """
    Check the reconciliation invariants of a schedule.

    Raises:
        ReconciliationFailure: on the first violated invariant
    """
    if not rows:
        raise ReconciliationFailure("Schedule has no installments")

    total_principal = money_sum((r.principal_amount for r in rows), principal.currency)
    if total_principal != principal:
        raise ReconciliationFailure(
            f"Principal parts sum to {total_principal.amount}, expected {principal.amount}",
            {"sum": str(total_principal.amount), "principal": str(principal.amount)}
        )
    if rows[0].opening_balance != principal:
        raise ReconciliationFailure("First opening balance does not equal principal")
    if not rows[-1].closing_balance.is_zero():
        raise ReconciliationFailure(
            f"Final closing balance is {rows[-1].closing_balance.amount}, expected 0"
        )

    for index, row in enumerate(rows):
        if row.sequence != index + 1:
            raise ReconciliationFailure(f"Sequence gap at position {index + 1}")
        if row.opening_balance - row.principal_amount != row.closing_balance:
            raise ReconciliationFailure(f"Installment {row.sequence} does not balance")
        if row.principal_amount.is_negative() or row.closing_balance.is_negative():
            raise ReconciliationFailure(f"Installment {row.sequence} has a negative amount")
        if index + 1 < len(rows) and row.closing_balance != rows[index + 1].opening_balance:
            raise ReconciliationFailure(
                f"Installment {row.sequence} closing balance does not chain to the next row"
            )
