"""
Currency -- registry, validation and base-currency conversion.

Every treasury balance is denominated in the base currency (LYD by default).
Receipts may be denominated in a foreign currency; each movement of cash
converts the original-currency amount with the exchange rate supplied for
that movement.  The conversion is a pure function of (amount, rate).
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import ClassVar

from treasury_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money
from treasury_kernel.exceptions import (
    ExchangeRateRequiredError,
    InvalidCurrencyError,
    InvalidAmountError,
    InvalidExchangeRateError,
    NonPositiveAmountError,
)

ONE = Decimal("1")


@dataclass(frozen=True)
class CurrencyInfo:
    """One supported currency."""

    code: str
    decimal_places: int
    name: str


class CurrencyRegistry:
    """Currencies the settlement engine accepts on receipts and treasuries."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        info.code: info
        for info in (
            CurrencyInfo("LYD", 3, "Libyan Dinar"),
            CurrencyInfo("USD", 2, "US Dollar"),
            CurrencyInfo("EUR", 2, "Euro"),
            CurrencyInfo("GBP", 2, "Pound Sterling"),
            CurrencyInfo("CHF", 2, "Swiss Franc"),
            CurrencyInfo("CNY", 2, "Chinese Yuan"),
            CurrencyInfo("TRY", 2, "Turkish Lira"),
            CurrencyInfo("EGP", 2, "Egyptian Pound"),
            CurrencyInfo("TND", 3, "Tunisian Dinar"),
            CurrencyInfo("DZD", 2, "Algerian Dinar"),
            CurrencyInfo("MAD", 2, "Moroccan Dirham"),
            CurrencyInfo("AED", 2, "UAE Dirham"),
            CurrencyInfo("SAR", 2, "Saudi Riyal"),
            CurrencyInfo("QAR", 2, "Qatari Riyal"),
            CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
            CurrencyInfo("BHD", 3, "Bahraini Dinar"),
            CurrencyInfo("JOD", 3, "Jordanian Dinar"),
            CurrencyInfo("OMR", 3, "Omani Rial"),
            CurrencyInfo("JPY", 0, "Japanese Yen"),
            CurrencyInfo("INR", 2, "Indian Rupee"),
            CurrencyInfo("CAD", 2, "Canadian Dollar"),
            CurrencyInfo("AUD", 2, "Australian Dollar"),
        )
    }

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def is_supported(cls, code: str) -> bool:
        return cls.get_info(code) is not None

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)


def validate_currency(code: str) -> str:
    """
    Normalize and validate a currency code.

    Returns:
        The upper-case code.

    Raises:
        InvalidCurrencyError: If the code is not a supported currency.
    """
    info = CurrencyRegistry.get_info(code)
    if info is None:
        raise InvalidCurrencyError(str(code))
    return info.code


def to_money(
    amount: Decimal | int,
    field: str = "amount",
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Return ``amount`` as a Decimal quantized to ``decimal_places``.

    Ints are accepted.  A value with more decimals than the currency allows
    is refused, not rounded, so the stored amount is exactly what the caller
    asked for.

    Raises:
        InvalidAmountError: Not a Decimal or int, or too many decimals.
        NonPositiveAmountError: NaN or infinity.
    """
    value = _as_decimal(amount, field)
    if not value.is_finite():
        raise NonPositiveAmountError(amount, field=field)
    quantized = round_money(value, decimal_places)
    if quantized != value:
        raise InvalidAmountError(amount, field=field, decimal_places=decimal_places)
    return quantized


def require_positive(
    amount: Decimal | int,
    field: str = "amount",
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Validate a movement amount and return it quantized to ``decimal_places``.

    The positivity check runs on the quantized value, so an amount that
    would be stored as zero is refused as non-positive.

    Raises:
        InvalidAmountError: Not a Decimal or int, or too many decimals.
        NonPositiveAmountError: Zero, negative, NaN, or below the minor unit.
    """
    value = _as_decimal(amount, field)
    if not value.is_finite():
        raise NonPositiveAmountError(amount, field=field)
    quantized = round_money(value, decimal_places)
    if quantized <= ZERO:
        raise NonPositiveAmountError(amount, field=field)
    if quantized != value:
        raise InvalidAmountError(amount, field=field, decimal_places=decimal_places)
    return quantized


def _as_decimal(amount: object, field: str) -> Decimal:
    if isinstance(amount, bool) or not isinstance(amount, (Decimal, int)):
        raise InvalidAmountError(amount, field=field)
    return Decimal(amount)


def resolve_rate(
    currency: str,
    base_currency: str,
    exchange_rate: Decimal | None,
) -> Decimal:
    """
    Return the exchange rate to apply to an amount in ``currency``.

    Base-currency amounts always convert at 1; a supplied rate other than 1
    is rejected rather than silently ignored.  Foreign amounts require an
    explicit rate greater than zero.

    Raises:
        ExchangeRateRequiredError: Foreign currency with no rate.
        InvalidExchangeRateError: Rate is not a positive Decimal, or a
            base-currency amount was given a rate other than 1.
    """
    if currency == base_currency:
        if exchange_rate is not None and _checked_rate(exchange_rate) != ONE:
            raise InvalidExchangeRateError(exchange_rate)
        return ONE
    if exchange_rate is None:
        raise ExchangeRateRequiredError(currency, base_currency)
    return _checked_rate(exchange_rate)


def to_base(
    amount: Decimal,
    exchange_rate: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Convert an original-currency amount to the base currency.

    ``to_base(amount, rate) == amount * rate``, quantized to the stored
    money precision.

    Raises:
        InvalidExchangeRateError: If the rate is not greater than zero.
    """
    if not isinstance(amount, Decimal):
        raise TypeError(f"amount must be Decimal, got {type(amount).__name__}")
    rate = _checked_rate(exchange_rate)
    return round_money(amount * rate, decimal_places)


def _checked_rate(rate: object) -> Decimal:
    if isinstance(rate, bool) or not isinstance(rate, (Decimal, int, str)):
        raise InvalidExchangeRateError(rate)
    try:
        value = Decimal(rate)
    except InvalidOperation:
        raise InvalidExchangeRateError(rate) from None
    if not value.is_finite() or value <= ZERO:
        raise InvalidExchangeRateError(rate)
    return value
