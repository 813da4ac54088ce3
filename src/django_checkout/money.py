"""Money value object with currency-aware arithmetic."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Union

from django_checkout.exceptions import MixedCurrencyError


# Currency precision rules for settlement/display
CURRENCY_DECIMALS = {
    'USD': 2, 'EUR': 2, 'GBP': 2, 'INR': 2,
    'CAD': 2, 'AUD': 2, 'CHF': 2, 'MXN': 2,
    'JPY': 0, 'KRW': 0,  # No decimal currencies
}


@dataclass(frozen=True)
class Money:
    """
    Immutable money value object.

    Always normalizes amount to Decimal for precision.

    Usage:
        price = Money(Decimal("49.00"), "USD")
        total = price * 2 + Money(Decimal("5.00"), "USD")
        total.quantized()  # Money(Decimal("103.00"), "USD")
    """
    amount: Decimal
    currency: str

    def __post_init__(self):
        """Normalize amount to Decimal and currency to upper case."""
        if not isinstance(self.amount, Decimal):
            # Use object.__setattr__ because dataclass is frozen
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        object.__setattr__(self, 'currency', self.currency.upper())

    @classmethod
    def zero(cls, currency: str) -> 'Money':
        return cls(Decimal('0'), currency)

    @classmethod
    def parse(cls, value, currency: str) -> 'Money':
        """Parse a loosely-typed amount into Money. See parse_amount."""
        return cls(parse_amount(value), currency)

    def quantized(self) -> 'Money':
        """
        Return quantized to currency decimals for display/settlement.

        Uses banker's rounding (ROUND_HALF_EVEN).
        """
        decimals = CURRENCY_DECIMALS.get(self.currency, 2)
        quantized_amount = self.amount.quantize(
            Decimal(10) ** -decimals,
            rounding=ROUND_HALF_EVEN
        )
        return Money(quantized_amount, self.currency)

    def __add__(self, other: 'Money') -> 'Money':
        """Add two Money objects with the same currency."""
        if self.currency != other.currency:
            raise MixedCurrencyError(
                f"Cannot add {self.currency} to {other.currency}"
            )
        return Money(self.amount + other.amount, self.currency)

    def __mul__(self, factor: Union[Decimal, int]) -> 'Money':
        """Multiply Money by a numeric factor."""
        return Money(self.amount * Decimal(str(factor)), self.currency)

    def __eq__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self.currency == other.currency and self.amount == other.amount

    def __hash__(self):
        return hash((self.amount, self.currency))

    def __str__(self):
        return f"{self.quantized().amount} {self.currency}"


def parse_amount(value) -> Decimal:
    """
    Parse a loosely-typed amount (str, int, float, Decimal) into a Decimal.

    Floats go through str() so 49.9 stays 49.9. Booleans, None, NaN and
    infinities are rejected.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount
