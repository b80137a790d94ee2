"""
Loan Module

Installment financing for point-of-sale credit: loan origination with a
reconciled amortization schedule, installment payments, early payoff,
administrative cancellation and delinquency status.

Status is a state machine over activo, atrasado, liquidado and cancelado.
Only activo, liquidado and cancelado are ever stored; atrasado is derived from
the installment list and a reference date each time status is queried.
"""

from decimal import Decimal
from datetime import datetime, date, time, timezone
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union
from enum import Enum
import uuid

from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock
from .config import FinancingConfig, get_config
from .currency import Currency, Money, Numeric, as_money, money_sum, to_decimal
from .errors import (
    FinancingError, InvalidAmount, InvalidTerms, LoanClosed, LoanNotFound,
    OverPayment, UnknownInstallment
)
from .logging_config import get_logger, log_action
from .payments import AllocationMode, Allocation, PaymentApplicationEngine, PaymentOutcome
from .schedule import Cadence, Installment, generate_schedule
from .storage import StorageInterface, StorageRecord


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "activo"          # Balance outstanding, nothing overdue
    DELINQUENT = "atrasado"    # Derived: earliest unpaid installment past due + grace
    PAID_OFF = "liquidado"     # Balance reached zero (absorbing)
    CANCELLED = "cancelado"    # Administrative cancellation (absorbing)


TERMINAL_STATUSES = (LoanStatus.PAID_OFF, LoanStatus.CANCELLED)


@dataclass
class Loan(StorageRecord):
    """Financed sale with its amortization schedule"""
    customer_id: Optional[str]
    sale_id: Optional[str]
    total_amount: Money
    down_payment: Money
    principal: Money                    # Financed amount = total - down payment
    monthly_rate: Decimal               # e.g. 0.05 for 5% per month
    cadence: Cadence
    term: int
    start_date: date
    installments: List[Installment] = field(default_factory=list)
    status: LoanStatus = LoanStatus.ACTIVE
    paid_amount: Money = None           # Sum of installment payments, excludes down payment
    outstanding_balance: Money = None   # Principal not yet settled
    next_due_date: Optional[date] = None
    liquidated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    entity_type: ClassVar[str] = "loan"
    closed_error: ClassVar[type] = LoanClosed

    def __post_init__(self):
        if self.paid_amount is None:
            self.paid_amount = Money.zero(self.currency)
        if self.outstanding_balance is None:
            self.outstanding_balance = self.compute_outstanding()

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def level_payment(self) -> Money:
        """Scheduled payment shared by every installment but the last"""
        return self.installments[0].scheduled_payment

    @property
    def unpaid_installments(self) -> List[Installment]:
        return [i for i in self.installments if not i.is_paid]

    @property
    def earliest_unpaid(self) -> Optional[Installment]:
        unpaid = self.unpaid_installments
        return min(unpaid, key=lambda i: i.sequence) if unpaid else None

    @property
    def total_interest(self) -> Money:
        """Interest the full schedule would charge"""
        return money_sum((i.interest_amount for i in self.installments), self.currency)

    @property
    def interest_collected(self) -> Money:
        return money_sum((i.interest_paid for i in self.installments), self.currency)

    @property
    def total_collected(self) -> Money:
        """Everything received from the customer, down payment included"""
        return self.down_payment + self.paid_amount

    def installment(self, sequence: int) -> Installment:
        for inst in self.installments:
            if inst.sequence == sequence:
                return inst
        raise UnknownInstallment(
            f"Loan {self.id} has no installment {sequence}",
            {"loan_id": self.id, "sequence": sequence}
        )

    def compute_outstanding(self) -> Money:
        """principal - sum(principal_amount of paid installments)"""
        paid_principal = money_sum(
            (i.principal_amount for i in self.installments if i.is_paid), self.currency
        )
        return self.principal - paid_principal

    def is_delinquent(self, as_of: date, grace_period_days: int = 0) -> bool:
        if self.is_terminal:
            return False
        earliest = self.earliest_unpaid
        return earliest is not None and earliest.is_overdue(as_of, grace_period_days)

    def status_as_of(self, as_of: date, grace_period_days: int = 0) -> LoanStatus:
        """Stored status, with activo promoted to atrasado when overdue"""
        if self.status is LoanStatus.ACTIVE and self.is_delinquent(as_of, grace_period_days):
            return LoanStatus.DELINQUENT
        return self.status

    def refresh_totals(self) -> None:
        """Recompute derived balances after installments change"""
        self.paid_amount = money_sum((i.paid_amount for i in self.installments), self.currency)
        self.outstanding_balance = self.compute_outstanding()
        earliest = self.earliest_unpaid
        self.next_due_date = earliest.due_date if earliest else None

    def to_dict(self) -> Dict[str, Any]:
        result = self._base_dict()
        result.update({
            'customer_id': self.customer_id,
            'sale_id': self.sale_id,
            'currency': self.currency.code,
            'total_amount': str(self.total_amount.amount),
            'down_payment': str(self.down_payment.amount),
            'principal': str(self.principal.amount),
            'monthly_rate': str(self.monthly_rate),
            'cadence': self.cadence.value,
            'term': self.term,
            'start_date': self.start_date.isoformat(),
            'installments': [i.to_dict() for i in self.installments],
            'status': self.status.value,
            'paid_amount': str(self.paid_amount.amount),
            'outstanding_balance': str(self.outstanding_balance.amount),
            'next_due_date': self.next_due_date.isoformat() if self.next_due_date else None,
            'liquidated_at': self.liquidated_at.isoformat() if self.liquidated_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'cancellation_reason': self.cancellation_reason,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        currency = Currency[data['currency']]

        def money(key: str) -> Money:
            return Money(Decimal(data[key]), currency)

        def timestamp(key: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        return cls(
            **cls._parse_base(data),
            customer_id=data.get('customer_id'),
            sale_id=data.get('sale_id'),
            total_amount=money('total_amount'),
            down_payment=money('down_payment'),
            principal=money('principal'),
            monthly_rate=Decimal(data['monthly_rate']),
            cadence=Cadence(data['cadence']),
            term=data['term'],
            start_date=date.fromisoformat(data['start_date']),
            installments=[Installment.from_dict(i, currency) for i in data['installments']],
            status=LoanStatus(data['status']),
            paid_amount=money('paid_amount'),
            outstanding_balance=money('outstanding_balance'),
            next_due_date=date.fromisoformat(data['next_due_date']) if data.get('next_due_date') else None,
            liquidated_at=timestamp('liquidated_at'),
            cancelled_at=timestamp('cancelled_at'),
            cancellation_reason=data.get('cancellation_reason'),
        )


class LoanLedger:
    """
    Owns loan lifecycle: origination, payments, payoff and cancellation.

    Every mutation runs under a per-loan lock against a freshly loaded copy
    and is saved only if it succeeds, so a rejected operation leaves the
    stored loan untouched.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Clock] = None,
        config: Optional[FinancingConfig] = None,
        engine: Optional[PaymentApplicationEngine] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock or SystemClock()
        self.config = config or get_config()
        self.engine = engine or PaymentApplicationEngine()
        self.logger = get_logger("loans")

        self.loans_table = "loans"

    def create_loan(
        self,
        total_amount: Union[Money, Numeric],
        down_payment: Union[Money, Numeric] = Decimal('0'),
        monthly_rate: Optional[Numeric] = None,
        term: Optional[int] = None,
        cadence: Cadence = Cadence.MONTHLY,
        start_date: Optional[date] = None,
        customer_id: Optional[str] = None,
        sale_id: Optional[str] = None
    ) -> Loan:
        """
        Originate a loan and its schedule

        Args:
            total_amount: Sale total
            down_payment: Amount paid up front; the rest is financed
            monthly_rate: Nominal monthly rate fraction (config default when None)
            term: Number of installments (config default when None)
            cadence: Payment frequency
            start_date: Financing start (clock's today when None)
            customer_id: Opaque customer reference
            sale_id: Opaque originating sale reference

        Returns:
            Persisted Loan

        Raises:
            InvalidAmount: total not positive or negative down payment
            InvalidTerms: term outside configured bounds, negative rate, or
                down payment covering the whole total
        """
        currency = self.config.currency_enum
        term = term if term is not None else self.config.default_term

        try:
            total = as_money(total_amount, currency)
            down = as_money(down_payment, currency)
            rate = to_decimal(monthly_rate) if monthly_rate is not None else self.config.monthly_rate
            if not total.is_positive():
                raise InvalidAmount(f"Sale total must be positive, got {total.amount}")
            if down.is_negative():
                raise InvalidAmount(f"Down payment cannot be negative, got {down.amount}")
            if down >= total:
                raise InvalidTerms("Down payment must be less than the sale total")
            if not isinstance(term, int) or not self.config.min_term <= term <= self.config.max_term:
                raise InvalidTerms(
                    f"Term must be between {self.config.min_term} and {self.config.max_term}, got {term}"
                )
            if rate < 0:
                raise InvalidTerms(f"Rate cannot be negative, got {rate}")

            start = start_date or self.clock.today()
            principal = total - down
            schedule = generate_schedule(principal, rate, cadence, term, start)
        except FinancingError as e:
            self._log_rejection("create_loan", None, e)
            raise

        now = self.clock.now()
        loan_id = str(uuid.uuid4())
        for inst in schedule:
            inst.loan_id = loan_id

        loan = Loan(
            id=loan_id,
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            sale_id=sale_id,
            total_amount=total,
            down_payment=down,
            principal=principal,
            monthly_rate=rate,
            cadence=cadence,
            term=term,
            start_date=start,
            installments=schedule,
        )
        loan.refresh_totals()

        self._commit(loan, AuditEventType.LOAN_CREATED, {
            "customer_id": customer_id,
            "sale_id": sale_id,
            "principal": principal.amount,
            "monthly_rate": rate,
            "cadence": cadence.value,
            "term": term,
            "level_payment": loan.level_payment.amount,
        })
        log_action(self.logger, "info", f"Loan created for {principal.to_string()}",
                   action="create_loan", resource=f"loan:{loan.id}",
                   extra={"term": term, "cadence": cadence.value})
        return loan

    def apply_payment(
        self,
        loan_id: str,
        sequence: int,
        amount: Union[Money, Numeric],
        allocation: AllocationMode = AllocationMode.INTEREST_FIRST
    ) -> PaymentOutcome:
        """
        Apply a payment to one installment

        The installment is settled once its paid amount reaches the scheduled
        payment. Excess beyond the configured overpay tolerance is rejected;
        routing it to the next installment is the caller's decision.

        Raises:
            LoanNotFound, LoanClosed, InvalidAmount, UnknownInstallment, OverPayment
        """
        def mutation(loan: Loan):
            self.engine.ensure_open(loan)
            money = self.engine.validate_amount(amount, loan.currency)
            inst = loan.installment(sequence)
            if inst.is_paid:
                raise OverPayment(
                    f"Installment {sequence} of loan {loan.id} is already paid",
                    {"loan_id": loan.id, "sequence": sequence}
                )

            split = self.engine.allocate(
                money, inst.interest_due, inst.principal_due, allocation,
                self.config.overpay_tolerance_amount
            )
            now = self.clock.now()
            inst.paid_amount = inst.paid_amount + money
            inst.interest_paid = inst.interest_paid + split.interest
            inst.principal_paid = inst.principal_paid + split.principal
            if inst.paid_amount >= inst.scheduled_payment:
                inst.is_paid = True
                inst.paid_at = now

            if loan.compute_outstanding().is_zero():
                # trailing rows left empty by rounding up the level payment
                for tail in loan.unpaid_installments:
                    if tail.amount_due.is_zero():
                        tail.is_paid = True
                        tail.paid_at = now

            loan.refresh_totals()
            if not loan.unpaid_installments:
                loan.status = LoanStatus.PAID_OFF
                loan.liquidated_at = now

            outcome = self.engine.outcome(
                loan, money, split, loan.outstanding_balance, self._current_status(loan),
                now, installment_sequence=sequence, settled=inst.is_paid
            )
            return outcome, AuditEventType.INSTALLMENT_PAYMENT, {
                "sequence": sequence,
                "amount": money.amount,
                "interest": split.interest.amount,
                "principal": split.principal.amount,
                "allocation": allocation.value,
                "settled": inst.is_paid,
                "outstanding_balance": loan.outstanding_balance.amount,
            }

        return self._mutate(loan_id, "apply_payment", mutation)

    def early_payoff(self, loan_id: str, as_of: Optional[date] = None) -> PaymentOutcome:
        """
        Settle the remaining principal in one payment, waiving unaccrued interest

        Every unpaid installment is marked paid with only its outstanding
        principal. Its interest is reduced to whatever was already collected
        on it, so the settled rows still satisfy
        ``principal_amount + interest_amount == scheduled_payment == paid_amount``.

        Raises:
            LoanNotFound, LoanClosed (including a second payoff)
        """
        def mutation(loan: Loan):
            self.engine.ensure_open(loan)
            paid_at = self._payoff_timestamp(as_of)
            payoff = Money.zero(loan.currency)

            for inst in loan.unpaid_installments:
                due = inst.principal_due
                inst.interest_amount = inst.interest_paid
                inst.scheduled_payment = inst.principal_amount + inst.interest_amount
                inst.principal_paid = inst.principal_paid + due
                inst.paid_amount = inst.paid_amount + due
                inst.is_paid = True
                inst.is_early_payment = True
                inst.paid_at = paid_at
                payoff = payoff + due

            loan.status = LoanStatus.PAID_OFF
            loan.liquidated_at = paid_at
            loan.refresh_totals()

            split = Allocation(interest=Money.zero(loan.currency), principal=payoff)
            outcome = self.engine.outcome(
                loan, payoff, split, loan.outstanding_balance, loan.status,
                paid_at, settled=True
            )
            return outcome, AuditEventType.LOAN_PAID_OFF, {
                "payoff_amount": payoff.amount,
                "as_of": paid_at,
            }

        return self._mutate(loan_id, "early_payoff", mutation)

    def quote_payoff(self, loan_id: str) -> Money:
        """Amount ``early_payoff`` would collect now, without changing anything"""
        loan = self.get_loan(loan_id)
        if loan.is_terminal:
            return Money.zero(loan.currency)
        return money_sum((i.principal_due for i in loan.unpaid_installments), loan.currency)

    def cancel(self, loan_id: str, reason: str = "") -> Loan:
        """
        Administrative cancellation; terminal

        Raises:
            LoanNotFound, LoanClosed
        """
        def mutation(loan: Loan):
            self.engine.ensure_open(loan)
            loan.status = LoanStatus.CANCELLED
            loan.cancelled_at = self.clock.now()
            loan.cancellation_reason = reason or None
            return loan, AuditEventType.LOAN_CANCELLED, {
                "reason": reason,
                "outstanding_balance": loan.outstanding_balance.amount,
            }

        return self._mutate(loan_id, "cancel", mutation)

    def outstanding_balance(self, loan_id: str) -> Money:
        return self.get_loan(loan_id).compute_outstanding()

    def status(self, loan_id: str, as_of: Optional[date] = None,
               grace_period_days: Optional[int] = None) -> LoanStatus:
        loan = self.get_loan(loan_id)
        return loan.status_as_of(*self._reference(as_of, grace_period_days))

    def is_delinquent(self, loan_id: str, as_of: Optional[date] = None,
                      grace_period_days: Optional[int] = None) -> bool:
        loan = self.get_loan(loan_id)
        return loan.is_delinquent(*self._reference(as_of, grace_period_days))

    def get_loan(self, loan_id: str) -> Loan:
        """
        Raises:
            LoanNotFound: no loan with this id
        """
        data = self.storage.load(self.loans_table, loan_id)
        if data is None:
            raise LoanNotFound(f"Loan {loan_id} not found", {"loan_id": loan_id})
        return Loan.from_dict(data)

    def get_schedule(self, loan_id: str) -> List[Installment]:
        return sorted(self.get_loan(loan_id).installments, key=lambda i: i.sequence)

    def get_customer_loans(self, customer_id: str) -> List[Loan]:
        loans = [Loan.from_dict(d) for d in self.storage.find(self.loans_table, {"customer_id": customer_id})]
        loans.sort(key=lambda l: l.created_at)
        return loans

    def get_all_loans(self) -> List[Loan]:
        loans = [Loan.from_dict(d) for d in self.storage.load_all(self.loans_table)]
        loans.sort(key=lambda l: l.created_at)
        return loans

    def _mutate(self, loan_id: str, action: str, mutation):
        with self.storage.locks.hold(loan_id):
            try:
                loan = self.get_loan(loan_id)
                result, event_type, metadata = mutation(loan)
            except FinancingError as e:
                self._log_rejection(action, loan_id, e)
                raise

            loan.updated_at = self.clock.now()
            self._commit(loan, event_type, metadata)
            log_action(self.logger, "info", f"Loan {action} applied",
                       action=action, resource=f"loan:{loan_id}",
                       extra={k: str(v) for k, v in metadata.items()})
            return result

    def _commit(self, loan: Loan, event_type: AuditEventType, metadata: Dict[str, Any]) -> None:
        with self.storage.atomic():
            self.storage.save(self.loans_table, loan.id, loan.to_dict())
            if self.audit_trail and self.config.enable_audit_logging:
                self.audit_trail.log_event(event_type, loan.entity_type, loan.id, metadata)

    def _current_status(self, loan: Loan) -> LoanStatus:
        return loan.status_as_of(*self._reference(None, None))

    def _reference(self, as_of: Optional[date], grace_period_days: Optional[int]):
        if as_of is None:
            as_of = self.clock.today()
        if grace_period_days is None:
            grace_period_days = self.config.grace_period_days
        return as_of, grace_period_days

    def _payoff_timestamp(self, as_of: Optional[date]) -> datetime:
        now = self.clock.now()
        if as_of is None or as_of == now.date():
            return now
        return datetime.combine(as_of, time.min, tzinfo=timezone.utc)

    def _log_rejection(self, action: str, loan_id: Optional[str], error: FinancingError) -> None:
        log_action(self.logger, "warning", f"Loan {action} rejected: {error.message}",
                   action=action, resource=f"loan:{loan_id}" if loan_id else None,
                   error_code=error.code)
