"""
Currency Module

ISO 4217 currency codes and an immutable Money value with exact conversion
to and from integer minor units (cents, pence, yen). Schedule arithmetic is
done on minor units; Decimal only appears at the Money boundary.
NEVER uses float for monetary values.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from typing import Any, Dict, Union
from enum import Enum

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places
    CAD = ("CAD", 2)  # Canadian Dollar, 2 decimal places
    CHF = ("CHF", 2)  # Swiss Franc, 2 decimal places
    KWD = ("KWD", 3)  # Kuwaiti Dinar, 3 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount, e.g. 0.01 for USD"""
        return Decimal('0.1') ** self.precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code (case-insensitive)"""
        if not isinstance(code, str):
            raise ValidationError("currency", f"Unsupported currency: {code!r}")
        try:
            return cls[code.strip().upper()]
        except KeyError:
            raise ValidationError("currency", f"Unsupported currency: {code}")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or integer minor units.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        # Round to currency precision
        rounded = self.amount.quantize(self.currency.minor_unit, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def from_minor_units(cls, units: int, currency: Currency) -> 'Money':
        """Build Money from an integer count of minor units"""
        return cls(Decimal(units).scaleb(-currency.precision), currency)

    @property
    def minor_units(self) -> int:
        """Amount as an exact integer count of minor units"""
        return int(self.amount.scaleb(self.currency.precision))

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"

    def to_dict(self) -> Dict[str, str]:
        return {"amount": str(self.amount), "currency": self.currency.code}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'Money':
        return cls(Decimal(data["amount"]), Currency[data["currency"]])


def parse_amount(value: Union[Money, Decimal, int, str, Any], currency: Currency,
                 field: str = "amount") -> Money:
    """
    Coerce caller input into a positive Money in the given currency

    Accepts Money, Decimal, int or a numeric string. Amounts with more
    decimal places than the currency allows are rejected rather than
    rounded, so that the stored principal is exactly what was requested.

    Raises:
        ValidationError: If the value is not a positive, finite amount
            representable in the currency's minor units
    """
    if isinstance(value, Money):
        if value.currency != currency:
            raise ValidationError(
                field, f"Currency mismatch: {value.currency.code} != {currency.code}"
            )
        amount = value.amount
    elif isinstance(value, bool):
        raise ValidationError(field, f"'{field}' must be a number")
    elif isinstance(value, (Decimal, int)):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(field, f"'{field}' must be a number, got {value!r}")
    else:
        raise ValidationError(field, f"'{field}' must be a number")

    if not amount.is_finite():
        raise ValidationError(field, f"'{field}' must be a finite number")
    if amount <= 0:
        raise ValidationError(field, f"'{field}' must be positive")

    try:
        exact = amount.quantize(currency.minor_unit) == amount
    except InvalidOperation:
        raise ValidationError(field, f"'{field}' is out of range")
    if not exact:
        raise ValidationError(
            field,
            f"'{field}' has more than {currency.precision} decimal places for {currency.code}"
        )

    return Money(amount, currency)
