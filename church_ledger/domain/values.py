"""
Value types for the ledger: account classification, posting direction, and
amount parsing.

Responsibility:
    The only place where caller-supplied amounts are turned into ledger
    amounts.  Amounts are exact decimals at the API and integer minor units
    in storage; floats never enter the ledger.

Architecture position:
    Kernel > Domain.  Pure, no I/O.  Imported by models/, services/ and the
    journal builder.

Failure modes:
    - InvalidAmount for floats, booleans, non-numeric strings, NaN/Infinity,
      zero or negative amounts, and amounts finer than the currency's minor
      unit (e.g. 10.005 for a 2-decimal currency).
    - InvalidAmount when the amount in minor units would not fit the 64-bit
      storage column.
"""

from decimal import Decimal, InvalidOperation
from enum import Enum

from church_ledger.exceptions import InvalidAmount

DEFAULT_MINOR_UNIT_EXPONENT = 2

# Largest value a BIGINT minor-unit column can hold.
MAX_MINOR_UNITS = 2**63 - 1


class AccountType(str, Enum):
    """Closed set of account classifications."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"

    @property
    def normal_balance(self) -> "NormalBalance":
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT


class NormalBalance(str, Enum):
    """Side on which an account's balance increases."""

    DEBIT = "debit"
    CREDIT = "credit"


class Direction(str, Enum):
    """Which side of the transaction a line is on."""

    DEBIT = "debit"
    CREDIT = "credit"

    def opposite(self) -> "Direction":
        return Direction.CREDIT if self is Direction.DEBIT else Direction.DEBIT


def parse_amount(value, exponent: int = DEFAULT_MINOR_UNIT_EXPONENT) -> Decimal:
    """
    Validate a caller-supplied amount and return it as an exact Decimal.

    Accepts Decimal, int, or a numeric string.  The result is quantized to
    ``exponent`` decimal places.

    Raises:
        InvalidAmount: see module docstring.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(repr(value), "use Decimal, int or str, not float")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmount(value, "not a number") from None
    else:
        raise InvalidAmount(repr(value), f"unsupported type {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmount(str(value), "must be finite")
    if amount <= 0:
        raise InvalidAmount(str(value), "must be greater than zero")

    quantum = Decimal(1).scaleb(-exponent)
    try:
        quantized = amount.quantize(quantum)
    except InvalidOperation:
        raise InvalidAmount(str(value), "too large") from None
    if quantized != amount:
        raise InvalidAmount(
            str(value), f"more than {exponent} decimal places"
        )
    if to_minor_units(quantized, exponent) > MAX_MINOR_UNITS:
        raise InvalidAmount(str(value), "exceeds the largest storable amount")
    return quantized


def to_minor_units(amount: Decimal, exponent: int = DEFAULT_MINOR_UNIT_EXPONENT) -> int:
    """Convert an exact Decimal to integer minor units (10.50 -> 1050)."""
    scaled = amount.scaleb(exponent)
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(str(amount), f"more than {exponent} decimal places")
    return int(scaled)


def from_minor_units(units: int, exponent: int = DEFAULT_MINOR_UNIT_EXPONENT) -> Decimal:
    """Convert integer minor units back to a Decimal (1050 -> 10.50)."""
    return Decimal(int(units)).scaleb(-exponent)
