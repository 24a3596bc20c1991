"""
Module: treasury_kernel.db.types
Responsibility: Stored precision of money and exchange-rate columns, and the
    single rounding helper for money values.
Architecture position: Kernel > DB.  Imported by models/, domain/, services/
    and selectors/; imports nothing from them.

CRITICAL: No floats anywhere in the treasury kernel.  Amounts, balances and
rates are Decimal end to end.
"""

from decimal import ROUND_HALF_UP, Decimal

# Numeric(38, 9) money columns, Numeric(38, 12) rate columns
MONEY_DECIMAL_PLACES = 9
RATE_DECIMAL_PLACES = 12
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Quantize a monetary value to ``decimal_places``.

    Every amount persisted by the kernel goes through this function so that
    the value compared in Python is the value the database stores.

    Raises:
        TypeError: If value is not a Decimal.
    """
    if not isinstance(value, Decimal):
        raise TypeError(f"Money values must be Decimal, got {type(value).__name__}")
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def money_from_aggregate(value: object) -> Decimal:
    """
    Decimal for a SUM() result.

    Aggregates over CASE expressions may come back untyped (float or int on
    SQLite, None over zero rows).
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return round_money(Decimal(str(value)))
