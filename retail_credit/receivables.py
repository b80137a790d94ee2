"""
Accounts Receivable Module

On-account credit for sales marked as open credit: a single running balance
with no schedule, no due dates and no interest. These are informal tabs, so
the only rules are that payments are positive, never exceed the balance and
stop once the tab is settled.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union
from enum import Enum
import uuid

from .audit import AuditTrail, AuditEventType
from .clock import Clock, SystemClock
from .config import FinancingConfig, get_config
from .currency import Currency, Money, Numeric, as_money
from .errors import AlreadySettled, FinancingError, InvalidAmount, OverPayment, ReceivableNotFound
from .logging_config import get_logger, log_action
from .payments import AllocationMode, PaymentApplicationEngine, PaymentOutcome
from .storage import StorageInterface, StorageRecord


class ReceivableStatus(Enum):
    PENDING = "pendiente"    # Nothing paid yet
    PARTIAL = "parcial"      # Something paid, balance remains
    PAID = "pagado"          # Balance is zero (terminal)


class ReceivablePaymentMethod(Enum):
    CASH = "efectivo"
    TRANSFER = "transferencia"
    CARD = "tarjeta"


@dataclass
class ReceivablePayment:
    """One payment received against a receivable"""
    id: str
    amount: Money
    payment_method: ReceivablePaymentMethod
    paid_at: datetime
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'amount': str(self.amount.amount),
            'payment_method': self.payment_method.value,
            'paid_at': self.paid_at.isoformat(),
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], currency: Currency) -> 'ReceivablePayment':
        return cls(
            id=data['id'],
            amount=Money(Decimal(data['amount']), currency),
            payment_method=ReceivablePaymentMethod(data['payment_method']),
            paid_at=datetime.fromisoformat(data['paid_at']),
            notes=data.get('notes'),
        )


@dataclass
class Receivable(StorageRecord):
    """Running credit balance owed by a customer"""
    customer_id: Optional[str]
    sale_id: Optional[str]
    original_amount: Money
    paid_amount: Money = None
    description: str = ""
    due_date: Optional[date] = None
    payments: List[ReceivablePayment] = field(default_factory=list)

    entity_type: ClassVar[str] = "receivable"
    closed_error: ClassVar[type] = AlreadySettled

    def __post_init__(self):
        if self.paid_amount is None:
            self.paid_amount = Money.zero(self.original_amount.currency)

    @property
    def currency(self) -> Currency:
        return self.original_amount.currency

    @property
    def balance_due(self) -> Money:
        return self.original_amount - self.paid_amount

    @property
    def status(self) -> ReceivableStatus:
        if self.balance_due.is_zero():
            return ReceivableStatus.PAID
        if self.paid_amount.is_positive():
            return ReceivableStatus.PARTIAL
        return ReceivableStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status is ReceivableStatus.PAID

    def to_dict(self) -> Dict[str, Any]:
        result = self._base_dict()
        result.update({
            'customer_id': self.customer_id,
            'sale_id': self.sale_id,
            'currency': self.currency.code,
            'original_amount': str(self.original_amount.amount),
            'paid_amount': str(self.paid_amount.amount),
            'balance_due': str(self.balance_due.amount),
            'status': self.status.value,
            'description': self.description,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'payments': [p.to_dict() for p in self.payments],
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Receivable':
        currency = Currency[data['currency']]
        return cls(
            **cls._parse_base(data),
            customer_id=data.get('customer_id'),
            sale_id=data.get('sale_id'),
            original_amount=Money(Decimal(data['original_amount']), currency),
            paid_amount=Money(Decimal(data['paid_amount']), currency),
            description=data.get('description', ""),
            due_date=date.fromisoformat(data['due_date']) if data.get('due_date') else None,
            payments=[ReceivablePayment.from_dict(p, currency) for p in data.get('payments', [])],
        )


class ReceivableLedger:
    """
    Manages on-account credit balances
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
        self.logger = get_logger("receivables")

        self.receivables_table = "receivables"

    def create_receivable(
        self,
        original_amount: Union[Money, Numeric],
        advance: Union[Money, Numeric] = Decimal('0'),
        customer_id: Optional[str] = None,
        sale_id: Optional[str] = None,
        description: str = "",
        due_date: Optional[date] = None
    ) -> Receivable:
        """
        Open a receivable for a credit sale

        Args:
            original_amount: Amount owed on the sale
            advance: Amount the customer paid at the counter, recorded as paid
            customer_id: Opaque customer reference
            sale_id: Opaque originating sale reference
            description: What was sold
            due_date: Informal due date, for display only

        Raises:
            InvalidAmount: original amount not positive, or advance negative or
                larger than the original amount
        """
        currency = self.config.currency_enum
        try:
            original = as_money(original_amount, currency)
            paid = as_money(advance, currency)
            if not original.is_positive():
                raise InvalidAmount(f"Receivable amount must be positive, got {original.amount}")
            if paid.is_negative() or paid > original:
                raise InvalidAmount(f"Advance must be between 0 and {original.amount}, got {paid.amount}")
        except FinancingError as e:
            self._log_rejection("create_receivable", None, e)
            raise

        now = self.clock.now()
        receivable = Receivable(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            sale_id=sale_id,
            original_amount=original,
            paid_amount=paid,
            description=description,
            due_date=due_date,
        )

        self._commit(receivable, AuditEventType.RECEIVABLE_CREATED, {
            "customer_id": customer_id,
            "sale_id": sale_id,
            "original_amount": original.amount,
            "advance": paid.amount,
        })
        log_action(self.logger, "info", f"Receivable opened for {original.to_string()}",
                   action="create_receivable", resource=f"receivable:{receivable.id}")
        return receivable

    def apply_payment(
        self,
        receivable_id: str,
        amount: Union[Money, Numeric],
        payment_method: ReceivablePaymentMethod = ReceivablePaymentMethod.CASH,
        notes: Optional[str] = None
    ) -> PaymentOutcome:
        """
        Apply a payment to the running balance

        Raises:
            ReceivableNotFound, AlreadySettled, InvalidAmount, OverPayment
        """
        with self.storage.locks.hold(receivable_id):
            try:
                receivable = self.get_receivable(receivable_id)
                self.engine.ensure_open(receivable)
                money = self.engine.validate_amount(amount, receivable.currency)
                if money > receivable.balance_due:
                    raise OverPayment(
                        f"Payment of {money.to_string()} exceeds balance due "
                        f"{receivable.balance_due.to_string()}",
                        {"amount": str(money.amount), "balance_due": str(receivable.balance_due.amount)}
                    )
                split = self.engine.allocate(
                    money, Money.zero(receivable.currency), receivable.balance_due,
                    AllocationMode.PRINCIPAL_ONLY
                )
            except FinancingError as e:
                self._log_rejection("apply_payment", receivable_id, e)
                raise

            now = self.clock.now()
            if notes:
                notes = str(notes)[:self.config.receivable_notes_max_length]
            receivable.payments.append(ReceivablePayment(
                id=str(uuid.uuid4()),
                amount=money,
                payment_method=payment_method,
                paid_at=now,
                notes=notes or None,
            ))
            receivable.paid_amount = receivable.paid_amount + money
            receivable.updated_at = now

            self._commit(receivable, AuditEventType.RECEIVABLE_PAYMENT, {
                "amount": money.amount,
                "payment_method": payment_method.value,
                "balance_due": receivable.balance_due.amount,
                "status": receivable.status.value,
            })
            log_action(self.logger, "info", f"Receivable payment of {money.to_string()} applied",
                       action="apply_payment", resource=f"receivable:{receivable_id}",
                       extra={"status": receivable.status.value})

            return self.engine.outcome(
                receivable, money, split, receivable.balance_due, receivable.status, now,
                settled=receivable.is_terminal
            )

    def get_receivable(self, receivable_id: str) -> Receivable:
        """
        Raises:
            ReceivableNotFound: no receivable with this id
        """
        data = self.storage.load(self.receivables_table, receivable_id)
        if data is None:
            raise ReceivableNotFound(f"Receivable {receivable_id} not found",
                                     {"receivable_id": receivable_id})
        return Receivable.from_dict(data)

    def get_payments(self, receivable_id: str) -> List[ReceivablePayment]:
        return list(self.get_receivable(receivable_id).payments)

    def get_customer_receivables(self, customer_id: str) -> List[Receivable]:
        records = self.storage.find(self.receivables_table, {"customer_id": customer_id})
        receivables = [Receivable.from_dict(d) for d in records]
        receivables.sort(key=lambda r: r.created_at)
        return receivables

    def get_all_receivables(self) -> List[Receivable]:
        receivables = [Receivable.from_dict(d) for d in self.storage.load_all(self.receivables_table)]
        receivables.sort(key=lambda r: r.created_at)
        return receivables

    def _commit(self, receivable: Receivable, event_type: AuditEventType,
                metadata: Dict[str, Any]) -> None:
        with self.storage.atomic():
            self.storage.save(self.receivables_table, receivable.id, receivable.to_dict())
            if self.audit_trail and self.config.enable_audit_logging:
                self.audit_trail.log_event(event_type, receivable.entity_type, receivable.id, metadata)

    def _log_rejection(self, action: str, receivable_id: Optional[str], error: FinancingError) -> None:
        log_action(self.logger, "warning", f"Receivable {action} rejected: {error.message}",
                   action=action,
                   resource=f"receivable:{receivable_id}" if receivable_id else None,
                   error_code=error.code)
