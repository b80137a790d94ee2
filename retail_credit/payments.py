"""
Payment Application Module

Stateless validation and allocation shared by the loan and receivable
ledgers. The ledgers own state; this module decides whether a payment is
acceptable, how it splits between interest and principal, and what the
caller is told afterwards.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from .currency import Currency, Money, Numeric
from .errors import InvalidAmount, OverPayment


class AllocationMode(Enum):
    """How a payment is split between interest and principal"""
    INTEREST_FIRST = "interest_first"    # Outstanding interest is covered before principal
    PRINCIPAL_ONLY = "principal_only"    # Whole amount reduces principal (payoffs, tabs)


@dataclass(frozen=True)
class Allocation:
    """Split of one payment"""
    interest: Money
    principal: Money

    @property
    def total(self) -> Money:
        return self.interest + self.principal


@dataclass(frozen=True)
class PaymentOutcome:
    """What the caller needs after a payment, without re-querying the ledger"""
    entity_type: str
    entity_id: str
    amount_applied: Money
    allocation: Allocation
    status: Enum
    remaining_balance: Money
    applied_at: datetime
    installment_sequence: Optional[int] = None
    settled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'amount_applied': str(self.amount_applied.amount),
            'interest_applied': str(self.allocation.interest.amount),
            'principal_applied': str(self.allocation.principal.amount),
            'status': self.status.value,
            'remaining_balance': str(self.remaining_balance.amount),
            'applied_at': self.applied_at.isoformat(),
            'installment_sequence': self.installment_sequence,
            'settled': self.settled,
        }


class PaymentApplicationEngine:
    """
    Shared payment rules for every credit product.

    Holds no state, so one instance can serve any number of ledgers.
    """

    def validate_amount(self, amount: Union[Money, Numeric],
                        currency: Currency = Currency.DOP) -> Money:
        """
        Normalize and check a payment amount

        Raises:
            InvalidAmount: amount is not positive, not finite, finer than the
                currency's minor unit, or in another currency
        """
        if isinstance(amount, Money):
            if amount.currency != currency:
                raise InvalidAmount(
                    f"Payment in {amount.currency.code} for a {currency.code} balance"
                )
            money = amount
        else:
            money = Money(amount, currency)

        if not money.is_positive():
            raise InvalidAmount(f"Payment amount must be positive, got {money.amount}")
        if money.round() != money:
            raise InvalidAmount(
                f"Payment amount {money.amount} has more than {currency.precision} decimals"
            )
        return money.round()

    def ensure_open(self, target) -> None:
        """
        Reject payments against a terminal aggregate.

        ``target`` is a Loan or Receivable; each declares the error it raises
        when closed (LoanClosed / AlreadySettled).
        """
        if target.is_terminal:
            raise target.closed_error(
                f"{target.entity_type.capitalize()} {target.id} is {target.status.value}",
                {"entity_id": target.id, "status": target.status.value}
            )

    def allocate(
        self,
        amount: Money,
        interest_due: Money,
        principal_due: Money,
        mode: AllocationMode = AllocationMode.INTEREST_FIRST,
        tolerance: Decimal = Decimal('0')
    ) -> Allocation:
        """
        Split a payment between interest and principal

        Args:
            amount: Validated payment amount
            interest_due: Interest still owed on the target
            principal_due: Principal still owed on the target
            mode: Allocation instruction
            tolerance: Excess accepted over what is owed; it is booked as principal

        Raises:
            OverPayment: amount exceeds what is owed by more than the tolerance
        """
        zero = Money.zero(amount.currency)
        if mode is AllocationMode.PRINCIPAL_ONLY:
            owed = principal_due
        else:
            owed = interest_due + principal_due

        if amount.amount > owed.amount + tolerance:
            raise OverPayment(
                f"Payment of {amount.to_string()} exceeds {owed.to_string()} owed",
                {"amount": str(amount.amount), "owed": str(owed.amount)}
            )

        if mode is AllocationMode.PRINCIPAL_ONLY:
            return Allocation(interest=zero, principal=amount)

        to_interest = min(amount, interest_due)
        return Allocation(interest=to_interest, principal=amount - to_interest)

    def outcome(self, target, amount: Money, allocation: Allocation,
                remaining_balance: Money, status: Enum, applied_at: datetime,
                installment_sequence: Optional[int] = None,
                settled: bool = False) -> PaymentOutcome:
        return PaymentOutcome(
            entity_type=target.entity_type,
            entity_id=target.id,
            amount_applied=amount,
            allocation=allocation,
            status=status,
            remaining_balance=remaining_balance,
            applied_at=applied_at,
            installment_sequence=installment_sequence,
            settled=settled,
        )
