"""
Money Module

Fixed-point currency values backed by Decimal. NEVER uses float for monetary
values: arithmetic keeps full precision and ``round()`` commits a value to the
currency's minor unit with ROUND_HALF_UP.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .errors import InvalidAmount

# Amortization factors like (1+r)^-48 need headroom beyond the cent
getcontext().prec = 28

Numeric = Union[Decimal, int, float, str]


class Currency(Enum):
    """ISO 4217 codes with minor-unit precision and display symbol"""
    DOP = ("DOP", 2, "RD$")  # Dominican Peso
    USD = ("USD", 2, "US$")
    EUR = ("EUR", 2, "€")

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.precision)


def to_decimal(value: Numeric) -> Decimal:
    """Convert input to a finite Decimal, rejecting NaN/Infinity and junk"""
    if isinstance(value, bool):
        raise InvalidAmount(f"Cannot use boolean {value!r} as an amount")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() first so 0.1 becomes Decimal('0.1'), not its binary expansion
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmount(f"Cannot convert {value!r} to an amount") from e
    if not result.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value!r}")
    return result


@dataclass(frozen=True)
class Money:
    """
    Immutable money value.

    The amount is held at full precision so intermediate schedule math does
    not lose cents; anything persisted must go through ``round()``.
    """
    amount: Decimal
    currency: Currency = Currency.DOP

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_decimal(self.amount))

    @classmethod
    def zero(cls, currency: Currency = Currency.DOP) -> 'Money':
        return cls(Decimal('0'), currency)

    @classmethod
    def payment(cls, value: Numeric, currency: Currency = Currency.DOP) -> 'Money':
        """Build an amount received from a customer; negatives are meaningless here"""
        amount = to_decimal(value)
        if amount < 0:
            raise InvalidAmount(f"Payment amount cannot be negative: {value}")
        return cls(amount, currency).round()

    def round(self) -> 'Money':
        """Round half-up to the currency's minor unit"""
        return Money(
            self.amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP),
            self.currency
        )

    @property
    def minor_units(self) -> int:
        """Integer count of minor units (cents) after rounding"""
        return int(self.round().amount.scaleb(self.currency.precision))

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def add(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def subtract(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def multiply(self, factor: Numeric) -> 'Money':
        return Money(self.amount * to_decimal(factor), self.currency)

    def divide(self, divisor: Numeric) -> 'Money':
        divisor = to_decimal(divisor)
        if divisor == 0:
            raise InvalidAmount("Cannot divide money by zero")
        return Money(self.amount / divisor, self.currency)

    __add__ = add
    __sub__ = subtract
    __mul__ = multiply
    __truediv__ = divide

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def to_string(self) -> str:
        """Format for display, e.g. ``RD$1,970.17``"""
        return f"{self.currency.symbol}{self.round().amount:,.{self.currency.precision}f}"

    def __str__(self) -> str:
        return self.to_string()


def money_sum(values, currency: Currency = Currency.DOP) -> Money:
    """Sum an iterable of Money, returning zero for an empty iterable"""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total


def as_money(value: Union['Money', Numeric], currency: Currency) -> Money:
    """Coerce input to a cent-rounded Money in ``currency``"""
    if isinstance(value, Money):
        if value.currency != currency:
            raise InvalidAmount(f"Expected {currency.code}, got {value.currency.code}")
        return value.round()
    return Money(value, currency).round()
